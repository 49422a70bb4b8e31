"""
Identity Models

This module defines the resolved caller identity consumed by the generation
pipeline. An identity is produced by the authentication layer (bearer token
or anonymous session header) and decides which quota bucket and which quota
profile apply to a request.
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, ConfigDict


class AuthenticatedIdentity(BaseModel):
    """
    A caller whose bearer token was verified.
    """

    kind: Literal["authenticated"] = "authenticated"

    user_id: str = Field(
        ...,
        min_length=1,
        max_length=128,
        description="Subject claim of the verified token.",
    )

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )

    @property
    def quota_key(self) -> str:
        return self.user_id


class AnonymousIdentity(BaseModel):
    """
    A caller identified only by a client-generated session id.
    """

    kind: Literal["anonymous"] = "anonymous"

    session_id: str = Field(
        ...,
        min_length=1,
        max_length=128,
        description="Opaque anonymous session identifier.",
    )

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )

    @property
    def quota_key(self) -> str:
        return self.session_id


Identity = Annotated[
    Union[AuthenticatedIdentity, AnonymousIdentity],
    Field(discriminator="kind"),
]
