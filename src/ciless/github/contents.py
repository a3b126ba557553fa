import asyncio
import base64
import binascii

import aiohttp
import gidgethub
from gidgethub.abc import GitHubAPI
from sanic.log import logger
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ciless.config import Config
from ciless.exceptions import ConfigDecodeError, ConfigNotFoundError, TransportError


class ConfigFetcher:
    """Reads the build config file of a repository at a given ref."""

    def __init__(
        self,
        gh: GitHubAPI,
        path: str = ".ciless.yaml",
        timeout: float = 10.0,
        attempts: int = 3,
        backoff: float = 0.5,
    ):
        self.gh = gh
        self.path = path
        self.timeout = timeout
        self.attempts = attempts
        self.backoff = backoff

    @classmethod
    def from_config(cls, gh: GitHubAPI, config: Config) -> "ConfigFetcher":
        return cls(
            gh,
            path=config.CONFIG_FILE_PATH,
            timeout=config.REQUEST_TIMEOUT,
            attempts=config.FETCH_ATTEMPTS,
            backoff=config.FETCH_BACKOFF,
        )

    async def fetch(self, owner: str, repo: str, ref: str) -> bytes:
        """Return the raw config file content.

        Raises :class:`ConfigNotFoundError` if the file is absent at ``ref``,
        and :class:`TransportError` once all attempts to reach GitHub failed.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_exponential(multiplier=self.backoff, max=10 * self.backoff),
            retry=retry_if_exception_type(TransportError),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.debug(
                        "Retrying fetch of %s from %s/%s@%s (attempt %d)",
                        self.path,
                        owner,
                        repo,
                        ref,
                        attempt.retry_state.attempt_number,
                    )
                return await self._fetch_once(owner, repo, ref)

    async def _fetch_once(self, owner: str, repo: str, ref: str) -> bytes:
        logger.debug("Getting %s from %s/%s at %s", self.path, owner, repo, ref)
        try:
            async with asyncio.timeout(self.timeout):
                content = await self.gh.getitem(
                    "/repos/{owner}/{repo}/contents/{+path}{?ref}",
                    {"owner": owner, "repo": repo, "path": self.path, "ref": ref},
                )
        except gidgethub.BadRequest as e:
            if e.status_code == 404:
                raise ConfigNotFoundError(f"{owner}/{repo}", self.path, ref) from e
            raise TransportError(
                f"GitHub refused contents request: {e.status_code}"
            ) from e
        except gidgethub.HTTPException as e:
            raise TransportError(f"GitHub error: {e.status_code}") from e
        except TimeoutError as e:
            raise TransportError(
                f"Timed out after {self.timeout}s reading {owner}/{repo}"
            ) from e
        except aiohttp.ClientError as e:
            raise TransportError(f"Could not reach GitHub: {e}") from e

        if not isinstance(content, dict) or content.get("type") != "file":
            raise ConfigDecodeError(f"{self.path} in {owner}/{repo} is not a file")

        if content.get("encoding") != "base64":
            raise ConfigDecodeError(
                f"{self.path} in {owner}/{repo} has unsupported encoding "
                f"{content.get('encoding')!r}"
            )

        try:
            return base64.b64decode(content["content"])
        except (binascii.Error, KeyError) as e:
            raise ConfigDecodeError(f"{self.path} content is not valid base64") from e
