import argparse
import logging
import os
import sys
import time
from dataclasses import dataclass
from typing import List

if __package__ is None:
    _root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    if _root not in sys.path:
        sys.path.insert(0, _root)

from ncm_unlock.audio import probe
from ncm_unlock.batch import ProcessResult, image_extension, process_file

logger = logging.getLogger("ncm_unlock.cli")


@dataclass(frozen=True)
class Args:
    paths: List[str]
    output: str | None
    force: bool
    cover: bool
    probe: bool
    log_level: int


def _parse_args(argv: List[str] | None = None) -> Args:
    p = argparse.ArgumentParser(prog="ncm-unlock", description="把 .ncm 文件还原为其中的原始音频")
    p.add_argument("paths", nargs="+", help="ncm 文件或目录")
    p.add_argument("-o", "--output", default=None, help="输出目录（默认：与输入文件相同）")
    p.add_argument("-f", "--force", action="store_true", help="覆盖已存在的文件")
    p.add_argument("--cover", action="store_true", help="同时导出专辑封面")
    p.add_argument("--probe", action="store_true", help="输出音频采样率/声道/时长")
    g = p.add_mutually_exclusive_group()
    g.add_argument("-q", "--quiet", action="store_true")
    g.add_argument("-v", "--verbose", action="store_true")

    a = p.parse_args(argv)
    if a.quiet:
        level = logging.ERROR
    elif a.verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO
    return Args(
        paths=[str(x).strip().strip("`'\"") for x in a.paths],
        output=(os.path.abspath(str(a.output).strip().strip("`'\"")) if a.output else None),
        force=bool(a.force),
        cover=bool(a.cover),
        probe=bool(a.probe),
        log_level=level,
    )


def collect_inputs(paths: List[str]) -> List[str]:
    out: List[str] = []
    for path in paths:
        path = os.path.abspath(path)
        if os.path.isdir(path):
            for root, _dirs, files in os.walk(path):
                for name in sorted(files):
                    if name.lower().endswith(".ncm"):
                        out.append(os.path.join(root, name))
        else:
            out.append(path)
    return out


def _write(path: str, data: bytes, force: bool) -> bool:
    if not force and os.path.exists(path):
        logger.info("跳过已存在的文件: %s", path)
        return False
    with open(path, "wb") as f:
        f.write(data)
    return True


def _save(r: ProcessResult, src: str, a: Args) -> int:
    out_dir = a.output or os.path.dirname(src)
    os.makedirs(out_dir, exist_ok=True)
    dest = os.path.join(out_dir, r.output_filename)
    written = 0
    if _write(dest, r.result.audio_bytes, a.force):
        written += len(r.result.audio_bytes)
        logger.info("%s -> %s", r.filename, dest)
    if a.cover and r.result.cover_image:
        base, _ext = os.path.splitext(dest)
        _write(base + image_extension(r.result.cover_image), r.result.cover_image, a.force)
    if a.probe:
        info = probe(r.result.audio_bytes, r.converted_format)
        if info is not None:
            print(f"{r.output_filename}: {info.sample_rate}Hz, {info.nchannels}ch, {info.duration_s:.3f}s")
    return written


def main(argv: List[str] | None = None) -> int:
    a = _parse_args(argv)
    logging.basicConfig(level=a.log_level, format="%(levelname)s %(name)s: %(message)s")

    inputs = collect_inputs(a.paths)
    if not inputs:
        logger.warning("没有找到 .ncm 文件")
        return 1

    t0 = time.perf_counter()
    ok = 0
    failed = 0
    size = 0
    for src in inputs:
        r = process_file(src)
        if not r.success:
            failed += 1
            print(f"失败: {r.filename}: {r.error}", file=sys.stderr)
            continue
        ok += 1
        size += _save(r, src, a)
    wall = time.perf_counter() - t0

    print(f"完成: {ok} 个, 失败: {failed} 个, 写入 {size / 1024 / 1024:.2f}MB, 耗时 {wall:.3f}s")
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
