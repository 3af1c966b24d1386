from __future__ import annotations
import httpx
from dataclasses import dataclass
from urllib.parse import quote
from svn_migrator.core.config import settings

@dataclass
class GitLabClient:
    token: str
    api_base: str = settings.gitlab_api_base

    def _headers(self) -> dict:
        return {"PRIVATE-TOKEN": self.token, "Accept": "application/json"}

    @staticmethod
    def _error(message: str) -> dict:
        return {"success": False, "errors": [message]}

    async def fetch_project(self, project_id: int | str) -> dict:
        url = f"{self.api_base}/projects/{quote(str(project_id), safe='')}"
        try:
            async with httpx.AsyncClient(timeout=30) as client:
                r = await client.get(url, headers=self._headers())
                r.raise_for_status()
                project = r.json()
        except httpx.HTTPStatusError as e:
            return self._error(f"Failed to fetch project: {e.response.status_code} {e.response.reason_phrase}")
        except httpx.HTTPError as e:
            return self._error(f"Failed to fetch project: {e}")
        return {
            "success": True,
            "project": {
                "id": project.get("id"),
                "path_with_namespace": project.get("path_with_namespace"),
                "http_url": project.get("http_url_to_repo"),
                "web_url": project.get("web_url"),
            },
        }

    async def validate_connection(self) -> dict:
        try:
            async with httpx.AsyncClient(timeout=30) as client:
                r = await client.get(f"{self.api_base}/user", headers=self._headers())
                r.raise_for_status()
                user = r.json()
        except httpx.HTTPStatusError as e:
            return self._error(f"Failed to validate connection: {e.response.status_code} {e.response.reason_phrase}")
        except httpx.HTTPError as e:
            return self._error(f"Failed to validate connection: {e}")
        return {
            "success": True,
            "user": {k: user.get(k) for k in ("id", "username", "name", "email")},
        }

def authenticated_url(http_url: str, token: str) -> str:
    """Embed an OAuth2 token into an https clone URL for pushing."""
    if not http_url.startswith("https://"):
        return http_url
    return http_url.replace("https://", f"https://oauth2:{token}@", 1)
