"""
Property schemas for each node and edge type.

Every write is validated against the model for its type. Keys outside the
schema are only accepted when namespaced (``"ci:provider"``); core logic never
reads namespaced keys.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError
from .models import EdgeType, NodeType

NAMESPACE_SEPARATOR = ":"


class _Properties(BaseModel):
    """Base model: unknown keys must be namespaced."""

    model_config = ConfigDict(extra="allow")

    @model_validator(mode="after")
    def _require_namespaced_extras(self):
        for key in self.model_extra or {}:
            if NAMESPACE_SEPARATOR not in key:
                raise ValueError(
                    f"unknown property '{key}' (extra properties must be namespaced, e.g. 'x{NAMESPACE_SEPARATOR}{key}')"
                )
        return self


class _Archivable(_Properties):
    archived: bool = False
    archived_at: str | None = None
    archive_reason: str | None = None


# =============================================================================
# Node schemas
# =============================================================================


class AuditEntry(BaseModel):
    """One overwritten scalar on a merged project."""

    field: str
    old_value: Any = None
    timestamp: str


class ProjectProperties(_Archivable):
    name: str = Field(min_length=1)
    path: str = Field(min_length=1)
    path_key: str = Field(min_length=1)
    analysis_id: str | None = None
    languages: list[str] = Field(default_factory=list)
    technologies: list[str] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)
    ecosystem: str | None = None
    frameworks: list[str] = Field(default_factory=list)
    primary_language: str | None = None
    size: Literal["small", "medium", "large"] = "medium"
    total_files: int = Field(default=0, ge=0)
    has_tests: bool = False
    has_ci: bool = False
    has_docs: bool = False
    analysis_count: int = Field(default=0, ge=0)
    last_analyzed: str | None = None
    audit_history: list[AuditEntry] = Field(default_factory=list)


class ConfigurationProperties(_Archivable):
    ssg: str = Field(min_length=1)
    label: str | None = None

    @field_validator("ssg")
    @classmethod
    def _lowercase_ssg(cls, value: str) -> str:
        value = value.strip().lower()
        if not value:
            raise ValueError("ssg must not be blank")
        return value


class AnalysisProperties(_Archivable):
    analysis_id: str | None = None
    project_path: str = Field(min_length=1)
    language_histogram: dict[str, int] = Field(default_factory=dict)
    dependencies: list[str] = Field(default_factory=list)
    structure: dict[str, bool | int] = Field(default_factory=dict)
    observed_at: str


class UsageEvent(BaseModel):
    """One personal SSG usage recorded on a user node."""

    ssg: str
    success: bool
    timestamp: str
    project_type: str | None = None


class UserProperties(_Archivable):
    user_id: str = Field(min_length=1)
    preferred_ssgs: list[str] = Field(default_factory=list)
    documentation_style: Literal["minimal", "comprehensive", "tutorial-heavy"] = (
        "comprehensive"
    )
    expertise_level: Literal["beginner", "intermediate", "advanced"] = "intermediate"
    preferred_technologies: list[str] = Field(default_factory=list)
    auto_apply_preferences: bool = True
    usage_history: list[UsageEvent] = Field(default_factory=list)
    last_active: str | None = None


# =============================================================================
# Edge schemas
# =============================================================================


class DeploymentProperties(_Properties):
    ssg: str = Field(min_length=1)
    success: bool
    timestamp: str
    idempotency_token: str | None = None
    build_time: float | None = Field(default=None, ge=0)
    error_message: str | None = None
    deployment_url: str | None = None
    user_id: str | None = None


class AnalyzedByProperties(_Properties):
    observed_at: str


class RecommendedProperties(_Properties):
    ssg: str = Field(min_length=1)
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: list[str] = Field(default_factory=list)


class UserPrefersProperties(_Properties):
    ssg: str = Field(min_length=1)
    first_used: str


NODE_SCHEMAS: dict[NodeType, type[_Properties]] = {
    NodeType.PROJECT: ProjectProperties,
    NodeType.CONFIGURATION: ConfigurationProperties,
    NodeType.ANALYSIS: AnalysisProperties,
    NodeType.USER: UserProperties,
}

EDGE_SCHEMAS: dict[EdgeType, type[_Properties]] = {
    EdgeType.PROJECT_ANALYZED_BY: AnalyzedByProperties,
    EdgeType.PROJECT_DEPLOYED_WITH: DeploymentProperties,
    EdgeType.PROJECT_RECOMMENDED: RecommendedProperties,
    EdgeType.USER_PREFERS: UserPrefersProperties,
}

# Allowed (source type, target type) per edge type
EDGE_ENDPOINTS: dict[EdgeType, tuple[NodeType, NodeType]] = {
    EdgeType.PROJECT_ANALYZED_BY: (NodeType.PROJECT, NodeType.ANALYSIS),
    EdgeType.PROJECT_DEPLOYED_WITH: (NodeType.PROJECT, NodeType.CONFIGURATION),
    EdgeType.PROJECT_RECOMMENDED: (NodeType.PROJECT, NodeType.CONFIGURATION),
    EdgeType.USER_PREFERS: (NodeType.USER, NodeType.CONFIGURATION),
}


def _validate(model: type[_Properties], kind: str, properties: dict[str, Any]) -> dict:
    try:
        validated = model.model_validate(properties)
    except PydanticValidationError as e:
        fields = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
        raise ValidationError(kind, str(e), fields) from e
    return validated.model_dump(mode="json")


def validate_node_properties(node_type: NodeType, properties: dict[str, Any]) -> dict:
    """Validate and normalize node properties.

    Returns:
        JSON-compatible dict with schema defaults filled in

    Raises:
        ValidationError: If the properties violate the schema
    """
    node_type = NodeType(node_type)
    return _validate(NODE_SCHEMAS[node_type], f"{node_type.value} node", properties)


def validate_edge_properties(edge_type: EdgeType, properties: dict[str, Any]) -> dict:
    """Validate and normalize edge properties.

    Raises:
        ValidationError: If the properties violate the schema
    """
    edge_type = EdgeType(edge_type)
    return _validate(EDGE_SCHEMAS[edge_type], f"{edge_type.value} edge", properties)
