"""Configuration for the MediFly admin CLI."""

from pydantic import BaseModel, Field

API_PREFIX = "/api/v1"
USER_HEADER = "X-Medifly-User"


class CLIConfig(BaseModel):
    """Where the server lives and who the CLI acts as."""

    host: str = Field(default="localhost", description="Server host")
    port: int = Field(default=8080, description="Server port")
    user_id: str | None = Field(
        default=None, description="Value sent in the X-Medifly-User header"
    )
    timeout: float = Field(default=300.0, description="HTTP timeout in seconds")

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    @property
    def headers(self) -> dict[str, str]:
        return {USER_HEADER: self.user_id} if self.user_id else {}

    def url(self, path: str) -> str:
        """Absolute URL of an ``/api/v1`` path."""
        return f"{self.base_url}{API_PREFIX}{path}"

    @property
    def chat_url(self) -> str:
        return self.url("/ai/chat")

    @property
    def embeddings_url(self) -> str:
        return self.url("/hospitals/embeddings")
