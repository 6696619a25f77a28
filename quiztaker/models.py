from __future__ import annotations

from typing import Any, Dict, List, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Base for payloads exchanged with the quiz API (camelCase on the wire)."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )


class SecuritySettings(ApiModel):
    """Lockdown policy attached to a quiz."""

    enable_fullscreen: bool = False
    disable_right_click: bool = False
    disable_copy_paste: bool = False
    disable_tab_switch: bool = False
    enable_proctoring_mode: bool = False

    @field_validator("*", mode="before")
    @classmethod
    def _none_is_false(cls, value: Any) -> Any:
        return False if value is None else value

    @property
    def any_enabled(self) -> bool:
        return (
            self.enable_fullscreen
            or self.disable_right_click
            or self.disable_copy_paste
            or self.disable_tab_switch
            or self.enable_proctoring_mode
        )

    @property
    def fullscreen_required(self) -> bool:
        return self.enable_fullscreen or self.enable_proctoring_mode

    @property
    def right_click_blocked(self) -> bool:
        # Fullscreen mode always blocks the context menu.
        return self.disable_right_click or self.fullscreen_required

    @property
    def copy_paste_blocked(self) -> bool:
        return self.disable_copy_paste or self.enable_proctoring_mode

    @property
    def tab_switch_monitored(self) -> bool:
        return self.disable_tab_switch or self.fullscreen_required

    @property
    def shortcuts_blocked(self) -> bool:
        return self.fullscreen_required

    def active_features(self) -> List[str]:
        features = []
        if self.enable_fullscreen:
            features.append("Fullscreen")
        if self.disable_right_click:
            features.append("Right-click disabled")
        if self.disable_copy_paste:
            features.append("Copy/Paste disabled")
        if self.disable_tab_switch:
            features.append("Tab switching monitored")
        if self.enable_proctoring_mode:
            features.append("Proctoring mode")
        return features


class Question(ApiModel):
    """A multiple-choice question as served to the taker."""

    id: str | None = Field(default=None, validation_alias=AliasChoices("_id", "id"))
    text: str = Field(default="", validation_alias=AliasChoices("question", "text"))
    options: List[str] = Field(default_factory=list)
    marks: float = 1
    negative_marks: float | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, value: Any) -> Any:
        return None if value is None else str(value)


class Quiz(ApiModel):
    """Quiz metadata (read-only to the attempt controller)."""

    id: str | None = Field(default=None, validation_alias=AliasChoices("_id", "id"))
    title: str = ""
    type: Literal["academic", "event"] | None = None
    description: str | None = None
    instructions: str | None = None
    duration: float | None = None  # minutes
    questions: List[Question] = Field(default_factory=list)
    total_marks: float | None = None
    security_settings: SecuritySettings | None = None
    question_display_mode: Literal["one-at-a-time", "all-at-once"] = "one-at-a-time"
    start_time: str | None = None
    end_time: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, value: Any) -> Any:
        return None if value is None else str(value)

    @field_validator("question_display_mode", mode="before")
    @classmethod
    def _default_display_mode(cls, value: Any) -> Any:
        return value or "one-at-a-time"

    @property
    def duration_seconds(self) -> float | None:
        if not self.duration:
            return None
        return self.duration * 60

    def computed_total_marks(self) -> float:
        if self.total_marks is not None:
            return self.total_marks
        return sum(q.marks for q in self.questions)


class ParticipantInfo(ApiModel):
    """Participant returned by the event-quiz login."""

    is_team: bool = False
    team_name: str | None = None
    participant_details: Dict[str, Any] = Field(default_factory=dict)
    team_members: List[Dict[str, Any]] = Field(default_factory=list)
    is_emergency_login: bool = False

    @property
    def email(self) -> str | None:
        return self.participant_details.get("email")


class LoginResponse(ApiModel):
    session_token: str
    quiz: Quiz
    participant: ParticipantInfo = Field(default_factory=ParticipantInfo)
    has_attempted_quiz: bool = False


class AttemptRecord(ApiModel):
    """Server-side submission record for an academic quiz."""

    id: str | None = Field(default=None, validation_alias=AliasChoices("_id", "id"))
    status: str | None = None
    start_time: str | None = None


class EventQuestionSet(ApiModel):
    """Response of the event-quiz questions endpoint."""

    questions: List[Question] = Field(default_factory=list)
    time_remaining: float | None = None  # milliseconds
    quiz: Quiz | None = None


class QuizStatus(ApiModel):
    exists: bool = True
    is_active: bool = False
    title: str | None = None
    time_remaining: float | None = None


class TriggerButtons(ApiModel):
    button1: str = "Ctrl"
    button2: str = "6"


class AdminOverrideConfig(ApiModel):
    enabled: bool = False
    trigger_buttons: TriggerButtons = Field(default_factory=TriggerButtons)
    session_timeout: int = 300  # seconds


class AdminValidation(ApiModel):
    valid: bool = False
    message: str | None = None
    session_timeout: int | None = None


class AnswerEntry(ApiModel):
    """One answered question in a submission payload."""

    question_id: str
    selected_option: int


class SubmissionResult(ApiModel):
    """Grading summary returned by the submit endpoint."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    message: str | None = None
    score: float | None = None
    total_marks: float | None = None
    correct_answers: int | None = None
    total_questions: int | None = None
    percentage: float | None = None
    passed: bool | None = None
    submission_id: str | None = None

    @field_validator("submission_id", mode="before")
    @classmethod
    def _submission_id_as_str(cls, value: Any) -> Any:
        return None if value is None else str(value)


# ----------------------------------------------------------------------
# Bridge request/response bodies
# ----------------------------------------------------------------------
class Credentials(BaseModel):
    """Event-quiz login for POST /attempts/event/{quiz_id}."""

    username: str | None = None
    password: str | None = None


class AnswerRequest(BaseModel):
    selected_option: int


class NavigateRequest(BaseModel):
    direction: Literal["next", "previous"] | None = None
    index: int | None = None


class ConsentRequest(BaseModel):
    """Sent by the shell after its own requestFullscreen() call."""

    fullscreen: bool = True


class PasswordRequest(BaseModel):
    password: str


class HealthResponse(BaseModel):
    """Response body for GET /health."""

    status: str
    api_url: str
    attempt_state: str | None = None
