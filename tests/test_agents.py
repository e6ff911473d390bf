"""Tests for the persona registry, keyword router and hand-off state."""

from __future__ import annotations

import pytest

from career_agent.agents import (
    AgentPersona,
    HandoffState,
    PersonaContext,
    PersonaNotFoundError,
    PersonaRegistry,
    PersonaRouter,
    RegistryValidationError,
    build_default_registry,
    handoff_prompt,
)
from career_agent.agents.router import HandoffRule


def _persona(persona_id: str, handoffs=(), keywords=()) -> AgentPersona:
    return AgentPersona(
        id=persona_id,
        name=persona_id.title(),
        model="test-model",
        instructions=lambda ctx: f"{persona_id} instructions",
        handoffs=tuple(handoffs),
        keywords=tuple(keywords),
    )


class TestPersonaRegistry:
    """Tests for PersonaRegistry construction and lookup."""

    def test_default_registry_declaration_order(self):
        registry = build_default_registry()
        assert [p.id for p in registry.list_personas()] == ["triage", "resume", "interview", "planner", "jobsearch"]
        assert registry.entry_persona.id == "triage"
        assert len(registry) == 5

    def test_get_unknown_persona_raises(self):
        registry = build_default_registry()
        with pytest.raises(PersonaNotFoundError):
            registry.get_persona("astrologer")
        assert registry.find_persona("astrologer") is None
        assert "astrologer" not in registry

    def test_duplicate_ids_rejected(self):
        with pytest.raises(RegistryValidationError):
            PersonaRegistry([_persona("a"), _persona("a")], entry_persona_id="a")

    def test_missing_entry_rejected(self):
        with pytest.raises(RegistryValidationError):
            PersonaRegistry([_persona("a")], entry_persona_id="b")

    def test_unknown_handoff_target_rejected(self):
        with pytest.raises(RegistryValidationError):
            PersonaRegistry([_persona("a", handoffs=["ghost"])], entry_persona_id="a")

    def test_find_by_handoff_tool(self):
        registry = build_default_registry()
        assert registry.find_by_handoff_tool("transfer_to_interview").id == "interview"
        assert registry.find_by_handoff_tool("analyze_resume") is None

    def test_instructions_mention_previous_persona(self):
        resume = build_default_registry().get_persona("resume")
        text = resume.render_instructions(
            PersonaContext(previous_persona_id="triage", previous_persona_name="Career Counselor")
        )
        assert text.startswith("Resume Expert.")
        assert "transferred to you from the Career Counselor" in text
        assert "transferred" not in resume.render_instructions(PersonaContext())


class TestPersonaRouter:
    """Tests for PersonaRouter.route precedence."""

    @pytest.fixture
    def router(self) -> PersonaRouter:
        return PersonaRouter(build_default_registry())

    def test_keyword_match_on_new_conversation(self, router):
        decision = router.route("Can you help me improve my resume?", current_persona_id=None)
        assert decision.persona_id == "resume"
        assert decision.reason == "keyword"
        assert decision.matched_keyword == "resume"

    def test_switch_phrase_overrides_current_persona(self, router):
        decision = router.route("Please switch to interview prep", current_persona_id="resume")
        assert decision.persona_id == "interview"
        assert decision.reason == "switch_phrase"

    def test_stays_with_current_without_other_keywords(self, router):
        decision = router.route("What do you think about the second bullet?", current_persona_id="resume")
        assert decision.persona_id == "resume"
        assert decision.reason == "stay"

    def test_current_persona_keywords_do_not_switch(self, router):
        decision = router.route("More resume tips please", current_persona_id="resume")
        assert decision.persona_id == "resume"
        assert decision.reason == "stay"

    def test_fallback_without_keywords(self, router):
        decision = router.route("hello there", current_persona_id=None)
        assert decision.persona_id == "triage"
        assert decision.reason == "fallback"

    def test_unknown_current_persona_routes_as_new(self, router):
        decision = router.route("hello", current_persona_id="astrologer")
        assert decision.persona_id == "triage"
        assert decision.reason == "fallback"

    def test_keywords_match_whole_words(self, router):
        # "ats" must not fire inside "whats"
        assert router.route("whats next?", current_persona_id=None).persona_id == "triage"
        assert router.route("is my CV ok", current_persona_id=None).persona_id == "resume"

    def test_declaration_order_breaks_ties(self, router):
        decision = router.route("resume and interview help", current_persona_id=None)
        assert decision.persona_id == "resume"

    def test_switch_phrase_without_keyword_falls_through(self, router):
        decision = router.route("switch to something else", current_persona_id="planner")
        assert decision.persona_id == "planner"
        assert decision.reason == "stay"

    def test_configured_fallback(self):
        router = PersonaRouter(build_default_registry(), fallback_persona_id="planner")
        assert router.route("hi", None).persona_id == "planner"

    def test_unknown_fallback_rejected(self):
        with pytest.raises(RegistryValidationError):
            PersonaRouter(build_default_registry(), fallback_persona_id="astrologer")

    def test_rule_with_unknown_persona_rejected(self):
        with pytest.raises(RegistryValidationError):
            PersonaRouter(build_default_registry(), handoff_rules=[HandoffRule("resume", "ghost", ("x",))])


class TestHandoffSuggestions:
    """Tests for PersonaRouter.suggest_handoff."""

    def test_resume_to_interview(self):
        router = PersonaRouter(build_default_registry())
        suggestion = router.suggest_handoff("resume", "Your resume is ready for the interview stage.")
        assert suggestion is not None
        assert suggestion.persona_id == "interview"
        assert suggestion.rationale == handoff_prompt("resume", "interview")

    def test_table_order_is_priority(self):
        router = PersonaRouter(build_default_registry())
        suggestion = router.suggest_handoff("resume", "Time to apply and prepare for interview questions")
        assert suggestion.persona_id == "interview"

    def test_user_message_is_considered(self):
        router = PersonaRouter(build_default_registry())
        suggestion = router.suggest_handoff("jobsearch", "Here are five openings.", "should I optimize resume first?")
        assert suggestion.persona_id == "resume"

    def test_no_rule_no_suggestion(self):
        router = PersonaRouter(build_default_registry())
        assert router.suggest_handoff("triage", "resume interview") is None
        assert router.suggest_handoff("astrologer", "resume") is None
        assert router.suggest_handoff("resume", "Looks great overall.") is None


class TestHandoffState:
    """Tests for staged, committed and rolled back hand-offs."""

    def test_stage_then_commit(self):
        state = HandoffState("triage")
        assert state.stage("resume") is True
        assert state.current_persona_id == "resume"
        assert state.active_persona_id == "triage"
        assert state.transitioning

        transition = state.commit()
        assert transition.from_persona_id == "triage"
        assert transition.to_persona_id == "resume"
        assert state.active_persona_id == "resume"
        assert not state.transitioning

    def test_rollback_restores_active(self):
        state = HandoffState("resume")
        state.stage("interview")
        state.rollback()
        assert state.current_persona_id == "resume"
        assert state.commit() is None

    def test_stage_same_persona_is_noop(self):
        state = HandoffState("resume")
        assert state.stage("resume") is False
        assert not state.transitioning

    def test_stage_back_to_active_clears_pending(self):
        state = HandoffState("resume")
        state.stage("interview")
        state.stage("resume")
        assert state.pending_persona_id is None
        assert state.current_persona_id == "resume"

    def test_accept_refuses_while_staged(self):
        state = HandoffState("resume")
        state.stage("interview")
        with pytest.raises(RuntimeError):
            state.accept("planner")

    def test_accept_clears_suggestion(self):
        state = HandoffState("resume")
        state.suggest("interview", "ready for interviews")
        previous, current = state.accept("interview", "connecting you")
        assert (previous, current) == ("resume", "interview")
        assert state.suggested_persona_id is None
        assert state.snapshot()["transition_message"] == "connecting you"

    def test_rehydrate_ignores_unknown_persona(self):
        state = HandoffState.rehydrate("astrologer", "triage", known_ids={"triage", "resume"})
        assert state.active_persona_id == "triage"
        assert HandoffState.rehydrate("resume", "triage", known_ids={"triage", "resume"}).active_persona_id == "resume"
        assert HandoffState.rehydrate(None, "triage").active_persona_id == "triage"
