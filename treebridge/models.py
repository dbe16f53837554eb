"""Pydantic models shared by the sync core and the HTTP routes."""
from __future__ import annotations

from typing import Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class ProjectFile(BaseModel):
    path: str  # relative to the bound directory
    content: str = ""


class ProjectIdentity(BaseModel):
    externalId: str = ""
    displayName: str = ""
    sessionId: str
    resolvedProjectId: Optional[str] = None


class ChangeRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    changeType: Literal["write", "delete"] = "write"
    path: str  # "Workspace.Part" inbound, "Workspace/Part.server.lua" outbound
    content: Optional[str] = None
    isScript: bool = False
    nodeId: Optional[str] = None
    contentTypeHint: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("contentTypeHint", "className", "class"),
    )


class InboundResult(BaseModel):
    applied: list[str] = Field(default_factory=list)
    failed: list[dict[str, str]] = Field(default_factory=list)


# ── Request payloads ────────────────────────────────────────────────


class UploadRequest(BaseModel):
    externalId: str
    files: list[ProjectFile] = Field(default_factory=list)


class ConnectRequest(BaseModel):
    externalId: str = ""
    displayName: str = ""
    sessionId: str
    projectId: Optional[str] = None
    files: list[ProjectFile] = Field(default_factory=list)


class SessionRequest(BaseModel):
    sessionId: str


class BindRequest(BaseModel):
    sessionId: str
    directoryPath: str = Field(..., min_length=1)


class SyncRequest(BaseModel):
    sessionId: str
    changes: list[ChangeRecord] = Field(default_factory=list)


class ProxyWriteRequest(BaseModel):
    sessionId: str
    relativePath: str = Field(..., min_length=1)
    content: str = ""


class SessionDetail(ProjectIdentity):
    boundDirectory: Optional[str] = None
    files: list[ProjectFile] = Field(default_factory=list)
