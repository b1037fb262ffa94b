"""
Project snapshot schemas.

The service never reads a project store. Callers send an immutable
snapshot of the projects to cluster with every request.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ProjectPrompts(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str = Field(default="", description="Prompt used for text generation.")
    image: str = Field(default="", description="Prompt used for image generation.")
    tts: str = Field(default="", description="Text submitted for speech synthesis.")
    video: str = Field(default="", description="Prompt used for video generation.")

    def non_empty(self) -> list[str]:
        """Stripped prompt values in field order, blanks skipped."""
        values = (self.text, self.image, self.tts, self.video)
        return [v.strip() for v in values if v and v.strip()]


class ProjectRef(BaseModel):
    """
    One project as seen by the clustering pipeline.

    `descriptor_text` is the blob that gets embedded and shown to the
    naming model; only projects with at least one non-blank prompt are
    eligible for clustering.
    """

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "examples": [
                {
                    "id": "proj_01",
                    "title": "Neon city",
                    "prompts": {
                        "text": "A short story about a rainy cyberpunk night",
                        "image": "neon-lit alley, rain, cinematic",
                    },
                }
            ]
        },
    )

    id: str = Field(min_length=1, max_length=128, description="Caller-supplied project id.")
    title: str = Field(default="", max_length=512)
    prompts: ProjectPrompts = Field(default_factory=ProjectPrompts)

    @property
    def is_eligible(self) -> bool:
        return bool(self.prompts.non_empty())

    @property
    def descriptor_text(self) -> str:
        title = self.title.strip()
        body = " ".join(self.prompts.non_empty())
        return f"{title}. {body}".strip() if title else body
