import argparse
import json
import logging
import os
import queue
import threading
import time
import uuid
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Dict, List, Tuple
from urllib.parse import parse_qs, quote, urlparse

from ncm_unlock.batch import ProcessResult, decode_bytes, mime_type

logger = logging.getLogger(__name__)


def _static_dir() -> str:
    return os.path.join(os.path.dirname(__file__), "webui_static")


class _Output:
    def __init__(self, filename: str, content_type: str, data: bytes) -> None:
        self.filename = filename
        self.content_type = content_type
        self.data = data


class _Job:
    """Converts the uploaded files one at a time.

    The uploads are released once the job finishes; only the converted
    outputs stay for download.

    Events go through ``q`` in the order they happen; the SSE handler drains
    it, so a file's progress events reach the browser in order.
    """

    def __init__(self, job_id: str, files: List[Tuple[str, bytes]], output_dir: str | None = None) -> None:
        self.job_id = job_id
        self.files = files
        self.output_dir = output_dir
        self.outputs: Dict[int, _Output] = {}
        self.q: "queue.Queue[dict]" = queue.Queue()
        self.done = threading.Event()
        self.finished_at: float | None = None

    def _emit(self, payload: dict) -> None:
        self.q.put(payload)

    def _file_event(self, index: int, r: ProcessResult) -> dict:
        if not r.success:
            return {
                "type": "file",
                "index": index,
                "filename": r.filename,
                "success": False,
                "kind": r.error_kind,
                "error": r.error,
            }
        return {
            "type": "file",
            "index": index,
            "filename": r.filename,
            "success": True,
            "format": r.converted_format,
            "output": r.output_filename,
            "size": len(r.result.audio_bytes),
            "metadata": r.result.metadata.to_dict(),
            "warnings": [w.to_dict() for w in r.result.warnings],
        }

    def _save(self, r: ProcessResult) -> None:
        os.makedirs(self.output_dir, exist_ok=True)
        path = os.path.join(self.output_dir, r.output_filename)
        with open(path, "wb") as f:
            f.write(r.result.audio_bytes)
        logger.info("saved %s", path)

    def _run(self) -> None:
        try:
            self._emit({"type": "status", "status": "running", "total": len(self.files)})
            completed = 0
            for index, (filename, data) in enumerate(self.files):

                def _on_progress(p: int, index: int = index, filename: str = filename) -> None:
                    self._emit({"type": "progress", "index": index, "filename": filename, "progress": p})

                r = decode_bytes(filename, data, on_progress=_on_progress)
                if r.success:
                    self.outputs[index] = _Output(
                        filename=r.output_filename,
                        content_type=mime_type(r.converted_format),
                        data=r.result.audio_bytes,
                    )
                    if self.output_dir:
                        self._save(r)
                    completed += 1
                self._emit(self._file_event(index, r))
            self._emit({"type": "done", "completed": completed, "total": len(self.files)})
        except Exception as e:
            logger.exception("job %s failed", self.job_id)
            self._emit({"type": "error", "message": str(e)})
        finally:
            self.files = []
            self.finished_at = time.monotonic()
            self.done.set()


class _State:
    """Job registry plus the single worker that runs queued jobs in order.

    Finished jobs are dropped once they are older than ``job_ttl_s``, and the
    oldest finished ones go first when a new job would exceed ``max_jobs``.
    Running and queued jobs are never dropped.
    """

    def __init__(self, output_dir: str | None = None, max_jobs: int = 8, job_ttl_s: float = 600.0) -> None:
        self.output_dir = output_dir
        self.max_jobs = max_jobs
        self.job_ttl_s = job_ttl_s
        self.jobs: dict[str, _Job] = {}
        self.lock = threading.Lock()
        self.pending: "queue.Queue[_Job | None]" = queue.Queue()
        self.worker = threading.Thread(target=self._work, daemon=True)
        self.worker.start()

    def _work(self) -> None:
        while True:
            job = self.pending.get()
            if job is None:
                return
            job._run()

    def _prune(self) -> None:
        now = time.monotonic()
        finished = sorted(
            (j for j in self.jobs.values() if j.finished_at is not None),
            key=lambda j: j.finished_at,
        )
        for job in finished:
            if now - job.finished_at > self.job_ttl_s or len(self.jobs) >= self.max_jobs:
                del self.jobs[job.job_id]
                logger.debug("dropped job %s", job.job_id)

    def create_job(self, files: List[Tuple[str, bytes]]) -> _Job:
        job_id = uuid.uuid4().hex
        job = _Job(job_id=job_id, files=files, output_dir=self.output_dir)
        with self.lock:
            self._prune()
            self.jobs[job_id] = job
        self.pending.put(job)
        return job

    def get_job(self, job_id: str) -> _Job | None:
        with self.lock:
            return self.jobs.get(job_id)

    def shutdown(self) -> None:
        self.pending.put(None)
        self.worker.join(timeout=5)


def _read_body(handler: BaseHTTPRequestHandler) -> bytes:
    n = int(handler.headers.get("Content-Length", "0") or "0")
    return handler.rfile.read(n) if n > 0 else b""


def _parse_content_disposition(v: str) -> dict[str, str]:
    out: dict[str, str] = {}
    for part in v.split(";"):
        part = part.strip()
        if "=" not in part:
            continue
        k, val = part.split("=", 1)
        out[k.strip().lower()] = val.strip().strip('"')
    return out


def parse_multipart_files(content_type: str, body: bytes) -> List[Tuple[str, bytes]]:
    """Return ``(filename, content)`` for every ``file`` part of a multipart body."""
    boundary = None
    for p in content_type.split(";"):
        p = p.strip()
        if p.lower().startswith("boundary="):
            boundary = p.split("=", 1)[1].strip().strip('"')
            break
    if not boundary:
        raise ValueError("missing multipart boundary")

    files: List[Tuple[str, bytes]] = []
    for raw in body.split(("--" + boundary).encode("utf-8")):
        if raw.startswith(b"--"):
            break
        if raw.startswith(b"\r\n"):
            raw = raw[2:]
        header_blob, sep, content = raw.partition(b"\r\n\r\n")
        if not sep:
            continue
        headers: dict[str, str] = {}
        for line in header_blob.split(b"\r\n"):
            if b":" not in line:
                continue
            k, v = line.split(b":", 1)
            headers[k.decode("utf-8", "ignore").strip().lower()] = v.decode("utf-8", "ignore").strip()

        cd = _parse_content_disposition(headers.get("content-disposition", ""))
        if cd.get("name") != "file" or not cd.get("filename"):
            continue
        if content.endswith(b"\r\n"):
            content = content[:-2]
        files.append((os.path.basename(cd["filename"]), content))
    return files


class _Handler(BaseHTTPRequestHandler):
    server: "WebUiServer"

    def log_message(self, format: str, *args) -> None:
        logger.debug("%s - %s", self.address_string(), format % args)

    def _send_json(self, obj: dict, status: int = 200) -> None:
        raw = json.dumps(obj, ensure_ascii=False).encode("utf-8")
        self._send_bytes(raw, "application/json; charset=utf-8", status=status)

    def _send_bytes(self, raw: bytes, content_type: str, status: int = 200, filename: str | None = None) -> None:
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(raw)))
        if filename:
            self.send_header("Content-Disposition", f"attachment; filename*=UTF-8''{quote(filename)}")
        self.end_headers()
        self.wfile.write(raw)

    def _send_file(self, path: str, content_type: str) -> None:
        if not os.path.isfile(path):
            self.send_error(HTTPStatus.NOT_FOUND)
            return
        with open(path, "rb") as f:
            raw = f.read()
        self._send_bytes(raw, content_type)

    def _stream_events(self, job: _Job) -> None:
        self.send_response(200)
        self.send_header("Content-Type", "text/event-stream; charset=utf-8")
        self.send_header("Cache-Control", "no-cache")
        self.send_header("Connection", "keep-alive")
        self.end_headers()
        self.wfile.write(b": ok\n\n")
        self.wfile.flush()
        last_ping = time.perf_counter()
        while True:
            try:
                item = job.q.get(timeout=0.5)
                line = ("data: " + json.dumps(item, ensure_ascii=False) + "\n\n").encode("utf-8")
                self.wfile.write(line)
                self.wfile.flush()
                if item.get("type") in ("done", "error"):
                    break
            except queue.Empty:
                now = time.perf_counter()
                if now - last_ping > 10.0:
                    self.wfile.write(b": ping\n\n")
                    self.wfile.flush()
                    last_ping = now
            except BrokenPipeError:
                break

    def do_GET(self) -> None:
        u = urlparse(self.path)
        qs = parse_qs(u.query or "")
        if u.path == "/" or u.path == "/index.html":
            return self._send_file(os.path.join(_static_dir(), "index.html"), "text/html; charset=utf-8")
        if u.path not in ("/events", "/download"):
            self.send_error(HTTPStatus.NOT_FOUND)
            return
        job = self.server.state.get_job((qs.get("job") or [""])[0])
        if job is None:
            return self._send_json({"error": "job_not_found"}, status=404)
        if u.path == "/events":
            return self._stream_events(job)
        try:
            index = int((qs.get("index") or ["-1"])[0])
        except ValueError:
            return self._send_json({"error": "bad_index"}, status=400)
        out = job.outputs.get(index)
        if out is None:
            return self._send_json({"error": "output_not_found"}, status=404)
        self._send_bytes(out.data, out.content_type, filename=out.filename)

    def do_POST(self) -> None:
        u = urlparse(self.path)
        if u.path != "/convert":
            self.send_error(HTTPStatus.NOT_FOUND)
            return

        ct = self.headers.get("Content-Type") or ""
        if "multipart/form-data" not in ct.lower():
            return self._send_json({"error": "expected_multipart_form_data"}, status=400)

        body = _read_body(self)
        try:
            files = parse_multipart_files(ct, body)
        except ValueError as e:
            return self._send_json({"error": "bad_multipart", "message": str(e)}, status=400)
        if not files:
            return self._send_json({"error": "missing_file"}, status=400)

        job = self.server.state.create_job(files)
        self._send_json({"job": job.job_id, "files": [name for name, _ in files]})


class WebUiServer(ThreadingHTTPServer):
    def __init__(self, server_address: tuple[str, int], state: _State) -> None:
        super().__init__(server_address, _Handler)
        self.state = state


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="ncm-unlock-webui")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8000)
    p.add_argument("--output-dir", default=None, help="同时把转换结果保存到该目录")
    p.add_argument("--max-jobs", type=int, default=8, help="内存中最多保留的任务数")
    p.add_argument("-v", "--verbose", action="store_true")
    return p.parse_args()


def main() -> None:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    output_dir = os.path.abspath(args.output_dir) if args.output_dir else None
    state = _State(output_dir=output_dir, max_jobs=max(1, args.max_jobs))
    httpd = WebUiServer((args.host, int(args.port)), state=state)
    print(f"Web UI: http://{args.host}:{int(args.port)}/")
    httpd.serve_forever()


if __name__ == "__main__":
    main()
