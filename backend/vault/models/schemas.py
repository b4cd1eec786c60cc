from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, Optional, Literal


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    error: str
    message: Optional[str] = None
    hint: Optional[str] = None
    requiresKey: bool = False


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# required fields are validated in the routes (400, not 422)
class InterviewQuestionsRequest(_CamelModel):
    resume_text: Optional[str] = Field(default=None, alias="resumeText")
    job_description: Optional[str] = Field(default=None, alias="jobDescription")
    company_name: Optional[str] = Field(default=None, alias="companyName")
    job_title: Optional[str] = Field(default=None, alias="jobTitle")
    api_key: Optional[str] = Field(default=None, alias="apiKey")
    api_type: Optional[str] = Field(default=None, alias="apiType")


class ProjectSuggestionsRequest(_CamelModel):
    job_description: Optional[str] = Field(default=None, alias="jobDescription")
    company_name: Optional[str] = Field(default=None, alias="companyName")
    job_title: Optional[str] = Field(default=None, alias="jobTitle")
    api_key: Optional[str] = Field(default=None, alias="apiKey")
    api_type: Optional[str] = Field(default=None, alias="apiType")


class GenerationJobRequest(InterviewQuestionsRequest):
    kind: Literal["interview_questions", "projects"]


class InterviewQuestionsResponse(BaseModel):
    success: bool = True
    questions: str
    provider: str
    model: Optional[str] = None
    executionTime: int


class ProjectSuggestionsResponse(BaseModel):
    success: bool = True
    suggestions: str
    provider: str
    model: Optional[str] = None
    executionTime: int


class UpdateEnvRequest(BaseModel):
    key: Optional[str] = None
    value: Optional[str] = None


class GenerationJobStatus(BaseModel):
    requestId: str
    status: str
    detail: Optional[str] = None
    updatedAt: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
