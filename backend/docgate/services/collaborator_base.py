"""
DocGate Backend - Collaborator Interface
========================================

What:  The narrow contract between a route group and the external service
       that owns its domain logic (summaries, PDF rendering, sharing by
       email, exports, templates, version history, upload processing).
How:   A route group builds a CollaboratorCall from the admitted request and
       awaits Collaborator.handle(); the reply is rendered as-is.
       Implementations own their timeout and retry policy and signal failure
       by raising CollaboratorError. They never build error responses.

Implementations:
    - HttpCollaborator:         forwards to the document service over HTTP
    - UnconfiguredCollaborator: raises for every call (no upstream configured)
    - tests use in-process fakes
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from docgate.exceptions import CollaboratorError
from docgate.services.upload_guard import UploadedFile


@dataclass
class CollaboratorCall:
    """
    Request Context handed to a collaborator.

    Exactly one of `json`, `form` or `body` is meaningful, depending on the
    request's content type; `files` is only filled for multipart requests.
    """

    group: str
    method: str
    subpath: str
    query: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    json: Any = None
    form: Optional[Dict[str, Any]] = None
    body: bytes = b""
    files: List[UploadedFile] = field(default_factory=list)
    request_id: str = ""


@dataclass
class CollaboratorReply:
    """
    What a collaborator sends back. `content` is either a JSON-serializable
    value or raw bytes (PDFs, exports) described by `media_type`.
    """

    status_code: int = 200
    content: Union[bytes, Any] = None
    media_type: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)


class Collaborator(ABC):
    """Abstract external collaborator."""

    name: str = "collaborator"

    @abstractmethod
    async def handle(self, call: CollaboratorCall) -> CollaboratorReply:
        """
        Perform the domain operation described by `call`.

        Raises:
            CollaboratorError: the operation could not be completed
        """
        ...

    async def aclose(self) -> None:
        """Release pooled resources. Called once at shutdown."""
        return None


class UnconfiguredCollaborator(Collaborator):
    """Stands in for a route group whose upstream URL was never configured."""

    def __init__(self, name: str):
        self.name = name

    async def handle(self, call: CollaboratorCall) -> CollaboratorReply:
        raise CollaboratorError(
            self.name,
            message=f"No upstream configured for the {self.name} service",
            context={"method": call.method, "subpath": call.subpath},
        )
