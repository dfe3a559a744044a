# git_server.py
# author: Andrew Kingdom, Copyright(C)2025, All rights reserved, MIT License (CC-BY).
"""
Git smart-HTTP server under /source/.

Requests are handed to `git http-backend` as CGI. Repositories live in the
place's data directory (<settings>/<place name>/). Fetching is public by
default; pushing needs the authenticate callback to accept the request's
Basic credentials, and creates the bare repository on first push.
"""

import asyncio
import base64
import binascii
import logging
import os
import re
import shutil
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response
from starlette.types import Receive, Scope, Send

PUSH_SERVICE = "git-receive-pack"
FETCH_SERVICE = "git-upload-pack"

# (service, repository, account, password) -> allowed
Authenticator = Callable[[str, str, Optional[str], Optional[str]], bool]

REPOSITORY_NAME = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9._-]*$")


def default_authenticate(service: str, repository: str, account: Optional[str], password: Optional[str]) -> bool:
    """Anyone may fetch; nobody may push until a real authenticator is supplied."""
    return service == FETCH_SERVICE


def requested_service(path_info: str, query: str) -> str:
    if path_info.endswith("/" + PUSH_SERVICE) or f"service={PUSH_SERVICE}" in query:
        return PUSH_SERVICE
    return FETCH_SERVICE


def basic_credentials(authorization: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    if not authorization or not authorization.lower().startswith("basic "):
        return None, None
    try:
        decoded = base64.b64decode(authorization[6:].strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None, None
    account, _, password = decoded.partition(":")
    return account, password


def parse_cgi_output(output: bytes) -> Tuple[int, List[Tuple[str, str]], bytes]:
    """Split CGI output into (status, headers, body)."""
    separator = b"\r\n\r\n" if b"\r\n\r\n" in output else b"\n\n"
    head, _, body = output.partition(separator)
    status = 200
    headers = []
    for line in head.decode("latin-1").splitlines():
        name, _, value = line.partition(":")
        name, value = name.strip(), value.strip()
        if not name:
            continue
        if name.lower() == "status":
            status = int(value.split()[0])
        else:
            headers.append((name, value))
    return status, headers, body


class GitServer:
    def __init__(self, repositories: Path, authenticate: Authenticator = default_authenticate,
                 prefix: str = "/source", git_binary: str = "git"):
        self.repositories = repositories
        self.authenticate = authenticate
        self.prefix = prefix.rstrip("/")
        self.git_binary = git_binary

    def cgi_environment(self, request: Request, path_info: str, account: Optional[str], body_length: int) -> Dict[str, str]:
        environment = {
            "GIT_PROJECT_ROOT": str(self.repositories),
            "GIT_HTTP_EXPORT_ALL": "1",
            "PATH_INFO": path_info,
            "REQUEST_METHOD": request.method,
            "QUERY_STRING": request.url.query,
            "CONTENT_TYPE": request.headers.get("content-type", ""),
            "CONTENT_LENGTH": str(body_length),
            "REMOTE_ADDR": request.client.host if request.client else "",
            "SERVER_PROTOCOL": "HTTP/1.1",
            "GATEWAY_INTERFACE": "CGI/1.1",
            "PATH": os.environ.get("PATH", ""),
        }
        if request.headers.get("content-encoding"):
            environment["HTTP_CONTENT_ENCODING"] = request.headers["content-encoding"]
        if request.headers.get("git-protocol"):
            environment["GIT_PROTOCOL"] = request.headers["git-protocol"]
        if account:
            # http-backend only enables receive-pack for authenticated users.
            environment["REMOTE_USER"] = account
        return environment

    async def ensure_repository(self, repository: str) -> None:
        repository_path = self.repositories / repository
        if repository_path.exists():
            return
        logging.info("🗄️ Creating git repository %s", repository_path)
        repository_path.parent.mkdir(parents=True, exist_ok=True)
        process = await asyncio.create_subprocess_exec(
            self.git_binary, "init", "--bare", "--quiet", str(repository_path),
            stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE,
        )
        _, stderr = await process.communicate()
        if process.returncode != 0:
            raise RuntimeError(f"git init failed: {stderr.decode(errors='replace').strip()}")

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        response = await self.handle(request)
        await response(scope, receive, send)

    async def handle(self, request: Request) -> Response:
        path_info = request.url.path[len(self.prefix):]
        repository = path_info.strip("/").split("/", 1)[0]
        if not REPOSITORY_NAME.match(repository):
            return PlainTextResponse("Not found", status_code=404)

        service = requested_service(path_info, request.url.query)
        account, password = basic_credentials(request.headers.get("authorization"))
        if not self.authenticate(service, repository, account, password):
            logging.info("🗄️ Refusing git %s of %s.", "push" if service == PUSH_SERVICE else "fetch", repository)
            return PlainTextResponse(
                "Unauthorized", status_code=401, headers={"WWW-Authenticate": 'Basic realm="Place"'}
            )

        if service == PUSH_SERVICE:
            logging.info("🗄️ Receiving git push: %s", repository)
            await self.ensure_repository(repository)
        else:
            logging.info("🗄️ Serving git fetch: %s", repository)

        body = await request.body()
        process = await asyncio.create_subprocess_exec(
            self.git_binary, "http-backend",
            env=self.cgi_environment(request, path_info, account if service == PUSH_SERVICE else None, len(body)),
            stdin=asyncio.subprocess.PIPE, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE,
        )
        output, stderr = await process.communicate(body)
        if stderr:
            logging.warning("🗄️ git http-backend: %s", stderr.decode(errors="replace").strip())
        status, headers, content = parse_cgi_output(output)
        response = Response(content, status_code=status)
        for name, value in headers:
            response.headers.append(name, value)
        return response


def create_git_server(repositories: Path, authenticate: Authenticator = default_authenticate) -> Optional[GitServer]:
    git_binary = shutil.which("git")
    if git_binary is None:
        logging.warning("⚠️ git is not installed; the git server under /source/ is disabled.")
        return None
    return GitServer(repositories, authenticate, git_binary=git_binary)
