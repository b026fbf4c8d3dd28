from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

import requests

from .errors import RemoteError
from .retry import RetryConfig, run_with_retries

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_GRAPHQL_URL = "https://api.github.com/graphql"
USER_AGENT = "missionsync-rest/0.1.0"
HTTP_ERROR_STATUS = 400
REQUEST_TIMEOUT = 30

_PROJECT_FIELDS = "id number title shortDescription closed"

_OWNER_ID_QUERY = """
query($owner: String!) {
  repositoryOwner(login: $owner) { id }
}
"""

_PROJECTS_QUERY = f"""
query($owner: String!, $cursor: String) {{
  repositoryOwner(login: $owner) {{
    ... on ProjectV2Owner {{
      projectsV2(first: 100, after: $cursor) {{
        nodes {{ {_PROJECT_FIELDS} }}
        pageInfo {{ hasNextPage endCursor }}
      }}
    }}
  }}
}}
"""

_PROJECT_ITEMS_QUERY = """
query($projectId: ID!, $cursor: String) {
  node(id: $projectId) {
    ... on ProjectV2 {
      items(first: 100, after: $cursor) {
        nodes {
          content {
            ... on Issue {
              number title body state stateReason
              milestone { number }
            }
          }
        }
        pageInfo { hasNextPage endCursor }
      }
    }
  }
}
"""

_CREATE_PROJECT_MUTATION = f"""
mutation($input: CreateProjectV2Input!) {{
  createProjectV2(input: $input) {{ projectV2 {{ {_PROJECT_FIELDS} }} }}
}}
"""

_UPDATE_PROJECT_MUTATION = f"""
mutation($input: UpdateProjectV2Input!) {{
  updateProjectV2(input: $input) {{ projectV2 {{ {_PROJECT_FIELDS} }} }}
}}
"""

_ADD_PROJECT_ITEM_MUTATION = """
mutation($input: AddProjectV2ItemByIdInput!) {
  addProjectV2ItemById(input: $input) { item { id } }
}
"""


class GitHubAPIError(RemoteError):
    """Raised when the GitHub REST/GraphQL API returns an error."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        response_text: str | None = None,
    ):
        super().__init__(message)
        self.status = status
        self.response_text = response_text


def graphql_url_for(base_url: str) -> str:
    base = base_url.rstrip("/")
    if base == DEFAULT_API_URL:
        return DEFAULT_GRAPHQL_URL
    # GitHub Enterprise serves REST under /api/v3 and GraphQL under /api/graphql
    if base.endswith("/v3"):
        base = base[: -len("/v3")]
    return f"{base}/graphql"


@dataclass
class GitHubRestClient:
    """Blocking REST/GraphQL client scoped to one ``owner/repo``."""

    token: str
    owner: str
    repo: str
    base_url: str = DEFAULT_API_URL
    graphql_url: str | None = None
    session: requests.Session | None = None
    retry: RetryConfig | None = None
    _session: requests.Session = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._session = self.session or requests.Session()
        self._session.headers.setdefault("Authorization", f"Bearer {self.token}")
        self._session.headers.setdefault("Accept", "application/vnd.github+json")
        self._session.headers.setdefault("User-Agent", USER_AGENT)
        if self.graphql_url is None:
            self.graphql_url = graphql_url_for(self.base_url)

    @property
    def repo_path(self) -> str:
        return f"/repos/{self.owner}/{self.repo}"

    # ---- REST helpers -------------------------------------------------
    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any | None = None,
    ) -> Any:
        url = (
            path
            if path.startswith("http")
            else f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"
        )

        def _run() -> requests.Response:
            try:
                return self._session.request(
                    method,
                    url,
                    params=params,
                    json=json_body,
                    headers=self._session.headers,
                    timeout=REQUEST_TIMEOUT,
                )
            except requests.RequestException as exc:
                raise GitHubAPIError(f"GitHub API {method} {url} failed: {exc}") from exc

        response = run_with_retries(_run, cfg=self.retry)
        if response.status_code >= HTTP_ERROR_STATUS:
            raise GitHubAPIError(
                f"GitHub API {method} {url} failed with {response.status_code}",
                status=response.status_code,
                response_text=response.text,
            )
        if response.text:
            try:
                return response.json()
            except ValueError:
                return response.text
        return None

    def _paginate(
        self, path: str, *, params: dict[str, Any] | None = None
    ) -> list[Any]:
        params = dict(params or {})
        per_page = params.setdefault("per_page", 100)
        params.setdefault("page", 1)
        results: list[Any] = []
        while True:
            data = self._request("GET", path, params=params)
            if not isinstance(data, list):
                break
            results.extend(data)
            if len(data) < per_page:
                break
            params["page"] = params.get("page", 1) + 1
        return results

    # ---- Issue operations --------------------------------------------
    def get_issue(self, number: int) -> dict[str, Any] | None:
        try:
            data = self._request("GET", f"{self.repo_path}/issues/{number}")
        except GitHubAPIError as exc:
            if exc.status == 404:  # noqa: PLR2004
                return None
            raise
        return data if isinstance(data, dict) else None

    def list_issues(
        self, *, state: str = "all", milestone: int | None = None
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"state": state}
        if milestone is not None:
            params["milestone"] = milestone
        data = self._paginate(f"{self.repo_path}/issues", params=params)
        # the issues endpoint also returns pull requests
        return [
            entry
            for entry in data
            if isinstance(entry, dict) and "pull_request" not in entry
        ]

    def create_issue(self, payload: dict[str, Any]) -> dict[str, Any]:
        data = self._request("POST", f"{self.repo_path}/issues", json_body=payload)
        if not isinstance(data, dict):
            raise GitHubAPIError("GitHub API returned no issue payload")
        return data

    def update_issue(self, number: int, payload: dict[str, Any]) -> dict[str, Any]:
        data = self._request(
            "PATCH", f"{self.repo_path}/issues/{number}", json_body=payload
        )
        if not isinstance(data, dict):
            raise GitHubAPIError("GitHub API returned no issue payload")
        return data

    # ---- Milestone operations ----------------------------------------
    def list_milestones(self, *, state: str = "all") -> list[dict[str, Any]]:
        data = self._paginate(f"{self.repo_path}/milestones", params={"state": state})
        return [entry for entry in data if isinstance(entry, dict)]

    def create_milestone(self, payload: dict[str, Any]) -> dict[str, Any]:
        data = self._request("POST", f"{self.repo_path}/milestones", json_body=payload)
        if not isinstance(data, dict):
            raise GitHubAPIError("GitHub API returned no milestone payload")
        return data

    def update_milestone(self, number: int, payload: dict[str, Any]) -> dict[str, Any]:
        data = self._request(
            "PATCH", f"{self.repo_path}/milestones/{number}", json_body=payload
        )
        if not isinstance(data, dict):
            raise GitHubAPIError("GitHub API returned no milestone payload")
        return data

    # ---- GraphQL ------------------------------------------------------
    def graphql(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        payload = {"query": query, "variables": variables or {}}
        data = self._request("POST", str(self.graphql_url), json_body=payload)
        if isinstance(data, dict) and data.get("errors"):
            raise GitHubAPIError(f"GraphQL query failed: {data['errors']}")
        if not isinstance(data, dict) or not isinstance(data.get("data"), dict):
            raise GitHubAPIError("GraphQL response carried no data")
        return data["data"]

    def _graphql_pages(
        self, query: str, variables: dict[str, Any], *path: str
    ) -> Iterator[dict[str, Any]]:
        cursor: str | None = None
        while True:
            data: Any = self.graphql(query, {**variables, "cursor": cursor})
            for key in path:
                data = data.get(key) if isinstance(data, dict) else None
            if not isinstance(data, dict):
                return
            for node in data.get("nodes") or []:
                if isinstance(node, dict):
                    yield node
            page = data.get("pageInfo") or {}
            if not page.get("hasNextPage"):
                return
            cursor = page.get("endCursor")

    # ---- Project (v2) operations -------------------------------------
    def owner_id(self) -> str:
        data = self.graphql(_OWNER_ID_QUERY, {"owner": self.owner})
        owner = data.get("repositoryOwner")
        if not isinstance(owner, dict) or not owner.get("id"):
            raise GitHubAPIError(f"Unknown repository owner: {self.owner}")
        return str(owner["id"])

    def list_projects(self) -> list[dict[str, Any]]:
        return list(
            self._graphql_pages(
                _PROJECTS_QUERY, {"owner": self.owner}, "repositoryOwner", "projectsV2"
            )
        )

    def list_project_issues(self, project_id: str) -> list[dict[str, Any]]:
        issues: list[dict[str, Any]] = []
        for item in self._graphql_pages(
            _PROJECT_ITEMS_QUERY, {"projectId": project_id}, "node", "items"
        ):
            content = item.get("content")
            # draft items and pull requests come back without issue fields
            if isinstance(content, dict) and content.get("number") is not None:
                issues.append(content)
        return issues

    def create_project(self, payload: dict[str, Any]) -> dict[str, Any]:
        data = self.graphql(
            _CREATE_PROJECT_MUTATION,
            {"input": {"ownerId": self.owner_id(), **payload}},
        )
        project = (data.get("createProjectV2") or {}).get("projectV2")
        if not isinstance(project, dict):
            raise GitHubAPIError("GitHub API returned no project payload")
        return project

    def update_project(self, project_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        data = self.graphql(
            _UPDATE_PROJECT_MUTATION, {"input": {"projectId": project_id, **payload}}
        )
        project = (data.get("updateProjectV2") or {}).get("projectV2")
        if not isinstance(project, dict):
            raise GitHubAPIError("GitHub API returned no project payload")
        return project

    def add_to_project(self, project_id: str, content_id: str) -> None:
        self.graphql(
            _ADD_PROJECT_ITEM_MUTATION,
            {"input": {"projectId": project_id, "contentId": content_id}},
        )


__all__ = [
    "DEFAULT_API_URL",
    "DEFAULT_GRAPHQL_URL",
    "GitHubAPIError",
    "GitHubRestClient",
    "graphql_url_for",
]
