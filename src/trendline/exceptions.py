"""Exception hierarchy for trendline.

All library exceptions inherit from TrendlineError, enabling callers to
catch all library errors with a single except clause while still allowing
fine-grained exception handling when needed.

Query failures carry the compiled SQL, its bound parameters and the store's
own error text so a caller can see exactly what was executed. Nothing in this
library retries a failed query.
"""

from __future__ import annotations

from typing import Any


class TrendlineError(Exception):
    """Base exception for all trendline errors.

    All library exceptions inherit from this class, allowing callers to:
    - Catch all library errors: except TrendlineError
    - Handle specific errors: except ProjectNotFoundError
    - Serialize errors: error.to_dict()
    """

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize exception.

        Args:
            message: Human-readable error message.
            code: Machine-readable error code for programmatic handling.
            details: Additional structured data about the error.
        """
        super().__init__(message)
        self._message = message
        self._code = code
        self._details = details or {}

    @property
    def code(self) -> str:
        """Machine-readable error code."""
        return self._code

    @property
    def message(self) -> str:
        """Human-readable error message."""
        return self._message

    @property
    def details(self) -> dict[str, Any]:
        """Additional structured error data."""
        return self._details

    def to_dict(self) -> dict[str, Any]:
        """Serialize exception for logging/JSON output.

        Returns:
            Dictionary with keys: code, message, details.
            All values are JSON-serializable.
        """
        return {
            "code": self._code,
            "message": self._message,
            "details": self._details,
        }

    def __str__(self) -> str:
        """Return human-readable error message."""
        return self._message

    def __repr__(self) -> str:
        """Return detailed string representation."""
        return (
            f"{self.__class__.__name__}(message={self._message!r}, code={self._code!r})"
        )


# API Exceptions - HTTP errors from the translator endpoint


class APIError(TrendlineError):
    """Base class for HTTP errors from the text-to-chart translator endpoint.

    Example:
        ```python
        try:
            suggestion = ws.text_to_chart("weekly signups")
        except APIError as e:
            print(f"Status: {e.status_code}")
            print(f"Response: {e.response_body}")
        ```
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        response_body: str | dict[str, Any] | None = None,
        request_method: str | None = None,
        request_url: str | None = None,
        code: str = "API_ERROR",
    ) -> None:
        """Initialize APIError.

        Args:
            message: Human-readable error message.
            status_code: HTTP status code from response.
            response_body: Raw response body (string or parsed dict).
            request_method: HTTP method used.
            request_url: Full request URL.
            code: Machine-readable error code.
        """
        self._status_code = status_code
        self._response_body = response_body
        self._request_method = request_method
        self._request_url = request_url

        details: dict[str, Any] = {"status_code": status_code}
        if response_body is not None:
            details["response_body"] = response_body
        if request_method is not None:
            details["request_method"] = request_method
        if request_url is not None:
            details["request_url"] = request_url

        super().__init__(message, code=code, details=details)

    @property
    def status_code(self) -> int:
        """HTTP status code from response."""
        return self._status_code

    @property
    def response_body(self) -> str | dict[str, Any] | None:
        """Raw response body (string or parsed dict)."""
        return self._response_body

    @property
    def request_method(self) -> str | None:
        """HTTP method used."""
        return self._request_method

    @property
    def request_url(self) -> str | None:
        """Full request URL."""
        return self._request_url


class AuthenticationError(APIError):
    """The translator endpoint rejected the configured API key (HTTP 401/403)."""

    def __init__(
        self,
        message: str = "Authentication failed",
        *,
        status_code: int = 401,
        response_body: str | dict[str, Any] | None = None,
        request_method: str | None = None,
        request_url: str | None = None,
    ) -> None:
        """Initialize AuthenticationError.

        Args:
            message: Human-readable error message.
            status_code: HTTP status code (default 401).
            response_body: Raw response body.
            request_method: HTTP method used.
            request_url: Full request URL.
        """
        super().__init__(
            message,
            status_code=status_code,
            response_body=response_body,
            request_method=request_method,
            request_url=request_url,
            code="AUTH_FAILED",
        )


class RateLimitError(APIError):
    """Translator endpoint rate limit exceeded (HTTP 429).

    The retry_after property carries the server's Retry-After hint. The
    library itself never retries.
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        retry_after: int | None = None,
        response_body: str | dict[str, Any] | None = None,
        request_method: str | None = None,
        request_url: str | None = None,
    ) -> None:
        """Initialize RateLimitError.

        Args:
            message: Human-readable error message.
            retry_after: Seconds until retry is allowed (from Retry-After header).
            response_body: Raw response body.
            request_method: HTTP method used.
            request_url: Full request URL.
        """
        self._retry_after = retry_after
        if retry_after is not None:
            message = f"{message}. Retry after {retry_after} seconds."

        super().__init__(
            message,
            status_code=429,
            response_body=response_body,
            request_method=request_method,
            request_url=request_url,
            code="RATE_LIMITED",
        )
        if retry_after is not None:
            self._details["retry_after"] = retry_after

    @property
    def retry_after(self) -> int | None:
        """Seconds until retry is allowed, or None if unknown."""
        return self._retry_after


# Configuration Exceptions


class ConfigError(TrendlineError):
    """Base for configuration-related errors.

    Raised when there's a problem with configuration files, environment
    variables, or project settings resolution.
    """

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize ConfigError.

        Args:
            message: Human-readable error message.
            details: Additional structured data.
        """
        super().__init__(message, code="CONFIG_ERROR", details=details)


class ProjectNotFoundError(ConfigError):
    """Named project does not exist in configuration.

    The available_projects property lists valid project names to help users.
    """

    def __init__(
        self,
        project_name: str,
        available_projects: list[str] | None = None,
    ) -> None:
        """Initialize ProjectNotFoundError.

        Args:
            project_name: The requested project name that wasn't found.
            available_projects: List of valid project names for suggestions.
        """
        available = available_projects or []
        if available:
            available_str = ", ".join(f"'{p}'" for p in available)
            message = (
                f"Project '{project_name}' not found. "
                f"Available projects: {available_str}"
            )
        else:
            message = f"Project '{project_name}' not found. No projects configured."

        details = {
            "project_name": project_name,
            "available_projects": available,
        }
        super().__init__(message, details=details)
        self._code = "PROJECT_NOT_FOUND"

    @property
    def project_name(self) -> str:
        """The requested project name that wasn't found."""
        return str(self._details.get("project_name", ""))

    @property
    def available_projects(self) -> list[str]:
        """List of valid project names."""
        projects = self._details.get("available_projects")
        return projects if isinstance(projects, list) else []


class ProjectExistsError(ConfigError):
    """Project name already exists in configuration."""

    def __init__(self, project_name: str) -> None:
        """Initialize ProjectExistsError.

        Args:
            project_name: The conflicting project name.
        """
        message = f"Project '{project_name}' already exists."
        details = {"project_name": project_name}
        super().__init__(message, details=details)
        self._code = "PROJECT_EXISTS"

    @property
    def project_name(self) -> str:
        """The conflicting project name."""
        return str(self._details.get("project_name", ""))


# Query Exceptions


class QueryError(TrendlineError):
    """The event store failed to execute a compiled query.

    Carries the SQL text, the bound parameter map and the store's error
    message. Raised from the underlying duckdb.Error, which stays available
    as __cause__.

    Example:
        ```python
        try:
            result = ws.insight(EventCount(event="Purchase"))
        except QueryError as e:
            print(e.store_error)
            print(e.sql)
            print(e.params)
        ```
    """

    def __init__(
        self,
        message: str = "Query execution failed",
        *,
        sql: str | None = None,
        params: dict[str, Any] | None = None,
        store_error: str | None = None,
        code: str = "QUERY_FAILED",
    ) -> None:
        """Initialize QueryError.

        Args:
            message: Human-readable error message.
            sql: SQL text that was executed.
            params: Named parameters bound to the statement.
            store_error: Error text reported by the store.
            code: Machine-readable error code.
        """
        details: dict[str, Any] = {}
        if sql is not None:
            details["sql"] = sql
        if params is not None:
            details["params"] = {k: _jsonable(v) for k, v in params.items()}
        if store_error is not None:
            details["store_error"] = store_error
        super().__init__(message, code=code, details=details)
        self._sql = sql
        self._params = params
        self._store_error = store_error

    @property
    def sql(self) -> str | None:
        """SQL text that was executed."""
        return self._sql

    @property
    def params(self) -> dict[str, Any] | None:
        """Named parameters bound to the statement."""
        return self._params

    @property
    def store_error(self) -> str | None:
        """Error text reported by the store."""
        return self._store_error


class QueryTimeoutError(QueryError):
    """The store interrupted a query that exceeded its timeout."""

    def __init__(
        self,
        timeout: float,
        *,
        sql: str | None = None,
        params: dict[str, Any] | None = None,
        store_error: str | None = None,
    ) -> None:
        """Initialize QueryTimeoutError.

        Args:
            timeout: Timeout in seconds that was exceeded.
            sql: SQL text that was executed.
            params: Named parameters bound to the statement.
            store_error: Error text reported by the store.
        """
        super().__init__(
            f"Query exceeded the {timeout:g}s timeout and was interrupted",
            sql=sql,
            params=params,
            store_error=store_error,
            code="QUERY_TIMEOUT",
        )
        self._details["timeout"] = timeout

    @property
    def timeout(self) -> float:
        """Timeout in seconds that was exceeded."""
        return float(self._details["timeout"])


class TranslationError(TrendlineError):
    """The text-to-chart translator returned output that is not a valid chart.

    The raw output is kept in details for debugging.
    """

    def __init__(self, message: str, raw_output: str | None = None) -> None:
        """Initialize TranslationError.

        Args:
            message: Human-readable error message.
            raw_output: Untrusted text returned by the translator.
        """
        details: dict[str, Any] = {}
        if raw_output is not None:
            details["raw_output"] = raw_output
        super().__init__(message, code="TRANSLATION_FAILED", details=details)

    @property
    def raw_output(self) -> str | None:
        """Untrusted text returned by the translator."""
        raw = self._details.get("raw_output")
        return str(raw) if raw is not None else None


# Storage Exceptions


class DatabaseLockedError(TrendlineError):
    """Database is locked by another process.

    DuckDB uses single-writer, multiple-reader concurrency: only one
    process can have write access at a time.

    Example:
        ```python
        try:
            ws = Workspace()
        except DatabaseLockedError as e:
            print(f"Database {e.db_path} is locked")
            if e.holding_pid:
                print(f"Held by PID {e.holding_pid}")
        ```
    """

    def __init__(
        self,
        db_path: str,
        holding_pid: int | None = None,
    ) -> None:
        """Initialize DatabaseLockedError.

        Args:
            db_path: Path to the locked database file.
            holding_pid: Process ID holding the lock, if available.
        """
        message = f"Database '{db_path}' is locked by another process"
        if holding_pid is not None:
            message += f" (PID {holding_pid})"
        message += ". Wait for the other operation to complete and try again."

        details: dict[str, str | int] = {
            "db_path": db_path,
            "suggestion": "Wait for the other operation to complete and try again.",
        }
        if holding_pid is not None:
            details["holding_pid"] = holding_pid

        super().__init__(message, code="DATABASE_LOCKED", details=details)

    @property
    def db_path(self) -> str:
        """Path to the locked database."""
        return str(self._details.get("db_path", ""))

    @property
    def holding_pid(self) -> int | None:
        """Process ID holding the lock, if available."""
        pid = self._details.get("holding_pid")
        return int(pid) if pid is not None else None


class DatabaseNotFoundError(TrendlineError):
    """Database file does not exist.

    Raised when opening a missing database file in read-only mode, which
    typically means nothing has been loaded yet.
    """

    def __init__(self, db_path: str) -> None:
        """Initialize DatabaseNotFoundError.

        Args:
            db_path: Path to the database file that doesn't exist.
        """
        message = (
            f"Database '{db_path}' does not exist. "
            "Run 'trendline load events' first to create it."
        )

        details: dict[str, str] = {
            "db_path": db_path,
            "suggestion": "Run 'trendline load events' or 'trendline load people'.",
        }

        super().__init__(message, code="DATABASE_NOT_FOUND", details=details)

    @property
    def db_path(self) -> str:
        """Path to the database file that doesn't exist."""
        return str(self._details.get("db_path", ""))


def _jsonable(value: Any) -> Any:
    """Render a bound parameter value in a JSON-safe form for error details."""
    if value is None or isinstance(value, str | int | float | bool):
        return value
    if isinstance(value, list | tuple):
        return [_jsonable(v) for v in value]
    return str(value)
