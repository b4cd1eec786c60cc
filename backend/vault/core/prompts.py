from enum import Enum
from typing import Optional

RESUME_MAX_CHARS = 1500
JOB_DESCRIPTION_MAX_CHARS = 800


class PromptVersion(Enum):
    V1 = "v1"


def truncate_text(text: Optional[str], max_chars: int) -> str:
    """Cut long inputs to keep prompts inside free-tier token limits."""
    if not text:
        return ""
    return text[:max_chars] + "..." if len(text) > max_chars else text


INTERVIEW_QUESTIONS_PROMPT_V1 = """You are an expert technical interviewer. Generate EXACTLY 20 interview questions for {job_title} at {company_name}.

========================================
RESUME:
========================================
{resume}

========================================
JOB DESCRIPTION:
========================================
{job_description}

========================================
REQUIREMENTS
========================================

Questions 1-10: CONCEPTUAL
- Practical implementation, tied to PROJECTS in the resume and the job requirements
- Test "WHY" and "HOW" things work in production
- Each answer: at least 4 complete sentences, **bold** for technical keywords

Questions 11-20: CODING (advanced)
- Pick the TOP 3 SKILLS from resume + job description, weighted by how central they are to the role
- Each answer: 2-3 sentences on the approach and complexity, a complete 15-25 line code block,
  then 3-4 sentences on how it works and where it is used

========================================
FORMAT
========================================

Question 1: [question]
Answer:
[answer]

- NO section headers, separators or dividers
- Number questions sequentially from 1 to 20
- Use **bold** for technical terms, formulas, metrics and tools

NOW GENERATE ALL 20 QUESTIONS STARTING WITH "Question 1:":"""


PROJECT_SUGGESTIONS_PROMPT_V1 = """Based on the following job description for {job_title} at {company_name}, generate 3-5 innovative project ideas that would be impressive for a portfolio and demonstrate the required skills.

For each project, use EXACTLY this format:

1. Project Title: [Full project name here]
Project Description: [EXACTLY 5 complete sentences: what it does, its purpose, key features, technical implementation, impact]
Key Technologies/Skills Used: [List of technologies]
Why it's impressive for this role: [EXACTLY 4 complete sentences: relevance, skills demonstrated, what stands out, value to the employer]

CRITICAL REQUIREMENTS:
- Start each project with the number and "Project Title:" on one line
- The FIRST line after the title MUST be "Project Description:"
- Then "Key Technologies/Skills Used:"
- Then "Why it's impressive for this role:"
- Separate each project with a blank line
- Do NOT use asterisks, markdown, or special formatting

Job Description:
{job_description}"""


class Prompts:
    """Centralized prompt repository. Versioned prompts for generation calls."""

    @staticmethod
    def interview_questions(
        resume_text: str,
        job_description: str,
        company_name: Optional[str] = None,
        job_title: Optional[str] = None,
        version: PromptVersion = PromptVersion.V1,
    ) -> str:
        if version == PromptVersion.V1:
            return INTERVIEW_QUESTIONS_PROMPT_V1.format(
                job_title=job_title or "the role",
                company_name=company_name or "the company",
                resume=truncate_text(resume_text, RESUME_MAX_CHARS),
                job_description=truncate_text(job_description, JOB_DESCRIPTION_MAX_CHARS),
            )
        else:
            raise ValueError(f"Unsupported prompt version: {version}")

    @staticmethod
    def project_suggestions(
        job_description: str,
        company_name: Optional[str] = None,
        job_title: Optional[str] = None,
        version: PromptVersion = PromptVersion.V1,
    ) -> str:
        # job description goes in untruncated
        if version == PromptVersion.V1:
            return PROJECT_SUGGESTIONS_PROMPT_V1.format(
                job_title=job_title or "the role",
                company_name=company_name or "the company",
                job_description=job_description,
            )
        else:
            raise ValueError(f"Unsupported prompt version: {version}")
