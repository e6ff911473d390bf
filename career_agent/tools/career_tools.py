"""Specialist tools for the career personas."""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from ..providers.base import ChatProvider
from ..providers.types import GenerationConfig, Message
from .base import BaseTool, ToolContext, ToolResult

ATS_SECTIONS = ("experience", "education", "skills", "summary", "projects", "certifications")
ACTION_VERBS = (
    "led", "built", "designed", "delivered", "improved", "increased", "reduced",
    "launched", "managed", "created", "implemented", "optimized",
)

MOCK_QUESTIONS: Dict[str, List[str]] = {
    "behavioral": [
        "Tell me about a time when you faced a significant challenge at work.",
        "Describe a situation where you had to work with a difficult colleague.",
        "Give me an example of when you had to meet a tight deadline.",
    ],
    "technical": [
        "How would you approach solving an unfamiliar technical problem?",
        "Explain a technology you used recently and the trade-offs you made.",
        "Walk me through your problem-solving process on a recent project.",
    ],
    "general": [
        "Tell me about yourself.",
        "Why are you interested in this role?",
        "What are your greatest strengths and weaknesses?",
    ],
    "panel": [
        "How do you handle working with multiple stakeholders?",
        "Describe your leadership style.",
        "How do you prioritize competing demands?",
    ],
}


async def _complete(provider: Optional[ChatProvider], system_prompt: str, prompt: str) -> Optional[str]:
    """Collect a full completion from the streaming provider, if one is configured."""
    if provider is None:
        return None
    chunks: List[str] = []
    async for delta in provider.generate_stream(
        [Message.user(prompt)],
        None,
        GenerationConfig(system_prompt=system_prompt, max_tokens=1500, temperature=0.4),
    ):
        if delta.text:
            chunks.append(delta.text)
    return "".join(chunks).strip() or None


def score_resume(content: str, target_role: Optional[str] = None) -> Dict[str, Any]:
    """Heuristic ATS score in the 0-100 range plus the signals behind it."""
    lowered = content.lower()
    sections = [s for s in ATS_SECTIONS if re.search(rf"\b{s}\b", lowered)]
    verbs = [v for v in ACTION_VERBS if re.search(rf"\b{v}\b", lowered)]
    metrics = len(re.findall(r"\d+(?:\.\d+)?\s*(?:%|percent|k\b|x\b)", lowered))
    words = len(content.split())

    score = 40
    score += min(len(sections) * 6, 30)
    score += min(len(verbs) * 2, 12)
    score += min(metrics * 3, 12)
    if 250 <= words <= 900:
        score += 6
    role_match = bool(target_role and target_role.lower() in lowered)
    if role_match:
        score += 5

    recommendations: List[str] = []
    missing = [s for s in ("experience", "education", "skills") if s not in sections]
    if missing:
        recommendations.append(f"Add clearly labelled sections for: {', '.join(missing)}.")
    if len(verbs) < 3:
        recommendations.append("Start bullet points with strong action verbs (led, built, improved).")
    if metrics == 0:
        recommendations.append("Quantify impact with numbers, percentages or scale.")
    if words < 250:
        recommendations.append("Expand on responsibilities and outcomes; the resume is very short.")
    elif words > 900:
        recommendations.append("Trim to the most relevant experience; the resume is long for ATS review.")
    if target_role and not role_match:
        recommendations.append(f"Mirror the wording of the target role ('{target_role}') where it is accurate.")

    return {
        "ats_score": min(score, 100),
        "sections_found": sections,
        "action_verbs": verbs,
        "quantified_results": metrics,
        "word_count": words,
        "recommendations": recommendations,
    }


class AnalyzeResumeTool(BaseTool):
    name = "analyze_resume"
    description = "Analyze a resume for ATS compatibility, content quality, and improvement suggestions"
    parameters = {
        "resume_content": {"type": "string", "description": "The resume content to analyze", "required": True},
        "target_role": {"type": "string", "description": "Target job role for tailored analysis"},
        "industry": {"type": "string", "description": "Target industry"},
    }

    def __init__(self, provider: Optional[ChatProvider] = None) -> None:
        self.provider = provider

    async def execute(
        self,
        context: ToolContext,
        resume_content: str = "",
        target_role: Optional[str] = None,
        industry: Optional[str] = None,
        **_: Any,
    ) -> ToolResult:
        report = score_resume(resume_content, target_role)
        prompt = (
            "Analyze this resume for ATS compatibility, structure, skills presentation and impact.\n"
            + (f"Target role: {target_role}\n" if target_role else "")
            + (f"Industry: {industry}\n" if industry else "")
            + f"\nResume content:\n{resume_content}"
        )
        analysis = await _complete(
            self.provider,
            "You are an expert resume analyzer. Provide detailed, actionable feedback.",
            prompt,
        )
        report["analysis"] = analysis or "; ".join(report["recommendations"]) or "The resume covers the essentials."
        return ToolResult(success=True, output=f"Resume analyzed (ATS score {report['ats_score']})", data=report)


class MockInterviewTool(BaseTool):
    name = "conduct_mock_interview"
    description = "Conduct a mock interview session with feedback"
    parameters = {
        "interview_type": {
            "type": "string",
            "enum": sorted(MOCK_QUESTIONS),
            "description": "Type of interview to simulate",
            "required": True,
        },
        "target_role": {"type": "string", "description": "Job role being interviewed for", "required": True},
        "experience": {"type": "string", "description": "User's experience level and background"},
        "question_index": {"type": "integer", "description": "Which question of the set to ask next"},
    }

    async def execute(
        self,
        context: ToolContext,
        interview_type: str = "general",
        target_role: str = "",
        experience: str = "",
        question_index: int = 0,
        **_: Any,
    ) -> ToolResult:
        questions = MOCK_QUESTIONS.get(interview_type)
        if questions is None:
            return ToolResult.failure(
                f"Unsupported interview type: {interview_type}",
                f"Choose one of: {', '.join(sorted(MOCK_QUESTIONS))}",
            )
        question = questions[int(question_index or 0) % len(questions)]
        return ToolResult(
            success=True,
            output=f"Mock {interview_type} interview question ready",
            data={
                "question": question,
                "tips": (
                    f"For this {interview_type} question about {target_role or 'the role'}, structure your "
                    "answer with the STAR method (Situation, Task, Action, Result)."
                ),
                "follow_up_questions": [q for q in questions if q != question][:2],
            },
        )


class CareerPathTool(BaseTool):
    name = "analyze_career_path"
    description = "Analyze current career situation and suggest development paths"
    parameters = {
        "current_role": {"type": "string", "description": "Current job role and responsibilities", "required": True},
        "experience": {"type": "string", "description": "Years and type of experience", "required": True},
        "goals": {"type": "string", "description": "Career goals and aspirations", "required": True},
        "skills": {"type": "string", "description": "Current skills and competencies", "required": True},
        "interests": {"type": "string", "description": "Professional interests and preferences"},
    }

    def __init__(self, provider: Optional[ChatProvider] = None) -> None:
        self.provider = provider

    async def execute(
        self,
        context: ToolContext,
        current_role: str = "",
        experience: str = "",
        goals: str = "",
        skills: str = "",
        interests: Optional[str] = None,
        **_: Any,
    ) -> ToolResult:
        skill_list = [s.strip() for s in re.split(r"[,;\n]", skills) if s.strip()]
        analysis = await _complete(
            self.provider,
            "You are a career strategist. Provide structured development recommendations.",
            (
                f"Current Role: {current_role}\nExperience: {experience}\nCareer Goals: {goals}\n"
                f"Current Skills: {skills}\n" + (f"Interests: {interests}\n" if interests else "")
                + "Provide potential paths, skills to develop, and 6-month and 2-3 year action items."
            ),
        )
        return ToolResult(
            success=True,
            output="Career path analysis complete",
            data={
                "analysis": analysis or f"Moving from {current_role} toward {goals} builds on {len(skill_list)} listed skills.",
                "current_skills": skill_list,
                "timeframes": {
                    "short_term": "Next 6 months: close the most visible skill gap and update your resume.",
                    "long_term": "2-3 years: take on scope that matches the target role and grow your network.",
                },
            },
        )


class JobSearchStrategyTool(BaseTool):
    name = "create_job_search_strategy"
    description = "Create a personalized job search strategy and action plan"
    parameters = {
        "target_role": {"type": "string", "description": "Target job role or title", "required": True},
        "industry": {"type": "string", "description": "Target industry or sector", "required": True},
        "location": {"type": "string", "description": "Geographic preferences for job search", "required": True},
        "experience": {"type": "string", "description": "Years and type of experience"},
        "timeline": {"type": "string", "description": "Job search timeline and urgency"},
    }

    async def execute(
        self,
        context: ToolContext,
        target_role: str = "",
        industry: str = "",
        location: str = "",
        experience: str = "",
        timeline: str = "",
        **_: Any,
    ) -> ToolResult:
        urgent = any(word in (timeline or "").lower() for word in ("asap", "urgent", "immediately", "weeks"))
        weekly_applications = 15 if urgent else 8
        return ToolResult(
            success=True,
            output=f"Job search strategy for {target_role} in {location} created",
            data={
                "platforms": ["LinkedIn", "industry job boards", f"{industry} company career pages"],
                "networking": [
                    f"Reach out to 5 people working as {target_role} each week",
                    "Attend one industry event or meetup per month",
                ],
                "weekly_goals": {"applications": weekly_applications, "follow_ups": weekly_applications // 2},
                "follow_up": "Follow up 7 days after each application with a short, specific note.",
                "salary_research": f"Compare salary ranges for {target_role} in {location} before interviews.",
            },
        )


class RequestSuggestionsTool(BaseTool):
    name = "request_suggestions"
    description = "Request suggestions for improving or continuing content"
    parameters = {
        "document_id": {"type": "string", "description": "The ID of the document to get suggestions for"},
        "current_content": {"type": "string", "description": "The current content", "required": True},
        "request_type": {
            "type": "string",
            "enum": ["improve", "continue", "alternatives"],
            "description": "Type of suggestions requested",
        },
    }

    async def execute(
        self,
        context: ToolContext,
        current_content: str = "",
        request_type: str = "improve",
        document_id: Optional[str] = None,
        **_: Any,
    ) -> ToolResult:
        sentences = [s.strip() for s in re.split(r"(?<=[.!?])\s+", current_content) if s.strip()]
        suggestions: List[Dict[str, str]] = []
        for sentence in sentences[:5]:
            if request_type == "improve" and len(sentence.split()) > 25:
                suggestions.append({"original": sentence, "suggestion": "Split this sentence; it is hard to scan."})
            elif request_type == "improve" and not re.search(r"\d", sentence):
                suggestions.append({"original": sentence, "suggestion": "Add a concrete number or outcome."})
        if request_type == "continue":
            suggestions.append({"original": "", "suggestion": "Close with the result and what you learned."})
        if request_type == "alternatives" and sentences:
            suggestions.append({"original": sentences[0], "suggestion": "Lead with the outcome, then the action."})
        return ToolResult(
            success=True,
            output=f"Generated {request_type} suggestions for the document",
            data={"document_id": document_id, "suggestions": suggestions},
        )
