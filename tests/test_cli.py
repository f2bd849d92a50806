import io
import os
import unittest
from contextlib import redirect_stderr, redirect_stdout
from tempfile import TemporaryDirectory

from ncm_fixtures import FLAC_AUDIO, PNG_IMAGE, build_ncm
from ncm_unlock import cli


class CliTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        self.src = os.path.join(self.tmpdir.name, "in")
        self.out = os.path.join(self.tmpdir.name, "out")
        os.makedirs(self.src)

    def _write(self, name: str, data: bytes) -> str:
        path = os.path.join(self.src, name)
        with open(path, "wb") as f:
            f.write(data)
        return path

    def _run(self, *args: str) -> tuple[int, str, str]:
        out = io.StringIO()
        err = io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            code = cli.main(list(args))
        return code, out.getvalue(), err.getvalue()

    def test_directory_conversion(self):
        self._write("one.ncm", build_ncm())
        self._write("readme.txt", b"ignored")
        code, stdout, _ = self._run(self.src, "-o", self.out, "--cover", "-q")
        self.assertEqual(code, 0)
        with open(os.path.join(self.out, "one.flac"), "rb") as f:
            self.assertEqual(f.read(), FLAC_AUDIO)
        with open(os.path.join(self.out, "one.png"), "rb") as f:
            self.assertEqual(f.read(), PNG_IMAGE)
        self.assertIn("完成: 1 个, 失败: 0 个", stdout)

    def test_failure_sets_exit_code(self):
        good = self._write("good.ncm", build_ncm())
        bad = self._write("bad.ncm", b"garbage")
        code, _stdout, stderr = self._run(good, bad, "-o", self.out, "-q")
        self.assertEqual(code, 1)
        self.assertIn("bad.ncm", stderr)
        self.assertTrue(os.path.exists(os.path.join(self.out, "good.flac")))

    def test_existing_output_is_kept_without_force(self):
        path = self._write("song.ncm", build_ncm())
        os.makedirs(self.out)
        dest = os.path.join(self.out, "song.flac")
        with open(dest, "wb") as f:
            f.write(b"old")
        self._run(path, "-o", self.out, "-q")
        with open(dest, "rb") as f:
            self.assertEqual(f.read(), b"old")
        self._run(path, "-o", self.out, "-q", "--force")
        with open(dest, "rb") as f:
            self.assertEqual(f.read(), FLAC_AUDIO)

    def test_defaults_to_input_directory(self):
        path = self._write("here.ncm", build_ncm())
        code, _stdout, _stderr = self._run(path, "-q")
        self.assertEqual(code, 0)
        self.assertTrue(os.path.exists(os.path.join(self.src, "here.flac")))

    def test_empty_directory(self):
        code, _stdout, _stderr = self._run(self.src, "-q")
        self.assertEqual(code, 1)

    def test_collect_inputs(self):
        self._write("b.ncm", b"")
        self._write("a.NCM", b"")
        self._write("c.mp3", b"")
        names = [os.path.basename(p) for p in cli.collect_inputs([self.src])]
        self.assertEqual(names, ["a.NCM", "b.ncm"])


if __name__ == "__main__":
    unittest.main()
