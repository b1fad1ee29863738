import json
import hashlib
import pathlib
import unittest

from unittest import mock

from click import testing

from defercommit.core import integrity
from defercommit.core import edits
from defercommit.cli import main

class TestCli(unittest.TestCase):
    def setUp(self):
        self.runner = testing.CliRunner()

    def invoke(self, *args):
        return self.runner.invoke(main.cli, list(args))

    def test_write(self):
        with self.runner.isolated_filesystem():
            path = pathlib.Path("file.bin")
            path.write_bytes(b"hello world")

            result = self.invoke("write", "file.bin", "6", "there")
            self.assertEqual(result.exit_code, 0, result.output)
            self.assertEqual(path.read_bytes(), b"hello there")

            result = self.invoke("write", "--hex", "file.bin", "11", "2121")
            self.assertEqual(result.exit_code, 0, result.output)
            self.assertEqual(path.read_bytes(), b"hello there!!")

    def test_write_past_end(self):
        with self.runner.isolated_filesystem():
            result = self.invoke("write", "--create", "file.bin", "5", "x")
            self.assertEqual(result.exit_code, 0, result.output)
            self.assertEqual(pathlib.Path("file.bin").read_bytes(),
                bytes(5) + b"x")

    def test_write_dry_run(self):
        with self.runner.isolated_filesystem():
            path = pathlib.Path("file.bin")
            path.write_bytes(b"hello world")

            result = self.invoke("write", "--dry-run", "file.bin", "0", "HELLO")
            self.assertEqual(result.exit_code, 0, result.output)
            self.assertIn("dry run", result.output)
            self.assertEqual(path.read_bytes(), b"hello world")

    def test_write_missing(self):
        with self.runner.isolated_filesystem():
            result = self.invoke("write", "file.bin", "0", "x")
            self.assertEqual(result.exit_code, 1)
            self.assertFalse(pathlib.Path("file.bin").exists())

    def test_resize(self):
        with self.runner.isolated_filesystem():
            path = pathlib.Path("file.bin")
            path.write_bytes(b"abc")

            result = self.invoke("--block-size", "2", "resize", "file.bin",
                "9")
            self.assertEqual(result.exit_code, 0, result.output)
            self.assertEqual(path.read_bytes(), b"abc" + bytes(6))

            result = self.invoke("resize", "file.bin", "4")
            self.assertEqual(result.exit_code, 1)
            self.assertEqual(path.read_bytes(), b"abc" + bytes(6))

    def test_digest(self):
        with self.runner.isolated_filesystem():
            pathlib.Path("file.bin").write_bytes(b"contents")
            result = self.invoke("digest", "file.bin")
            self.assertEqual(result.exit_code, 0, result.output)
            self.assertEqual(result.output.strip(),
                hashlib.sha256(b"contents").hexdigest())

    def test_apply(self):
        with self.runner.isolated_filesystem():
            path = pathlib.Path("file.bin")
            path.write_bytes(b"0123456789")

            script = edits.Script([
                edits.WriteEdit(2, b"ab"),
                edits.ResizeEdit(12),
                edits.WriteEdit(12, b"cd"),
            ])
            pathlib.Path("script.json").write_text(script.dumps())
            expected = b"01ab456789" + bytes(2) + b"cd"

            result = self.invoke("apply", "--expect-sha256", "00"*32,
                "file.bin", "script.json")
            self.assertEqual(result.exit_code, 1)
            self.assertIn("digest mismatch", result.output)
            self.assertEqual(path.read_bytes(), b"0123456789")

            result = self.invoke("apply", "--expect-sha256",
                hashlib.sha256(expected).hexdigest(),
                "file.bin", "script.json")
            self.assertEqual(result.exit_code, 0, result.output)
            self.assertEqual(path.read_bytes(), expected)

    def test_apply_all_or_nothing(self):
        with self.runner.isolated_filesystem():
            path = pathlib.Path("file.bin")
            path.write_bytes(b"0123456789")

            script = edits.Script([
                edits.WriteEdit(0, b"ab"),
                edits.ResizeEdit(5),
            ])
            pathlib.Path("script.json").write_text(script.dumps())

            result = self.invoke("apply", "file.bin", "script.json")
            self.assertEqual(result.exit_code, 1)
            self.assertEqual(path.read_bytes(), b"0123456789")

    def test_apply_invalid_script(self):
        with self.runner.isolated_filesystem():
            pathlib.Path("file.bin").write_bytes(b"data")
            pathlib.Path("script.json").write_text('{"edits": 5}')

            result = self.invoke("apply", "file.bin", "script.json")
            self.assertEqual(result.exit_code, 1)
            self.assertIn("invalid edit script", result.output)

    def test_apply_float_offset(self):
        with self.runner.isolated_filesystem():
            path = pathlib.Path("file.bin")
            path.write_bytes(b"0123456789")
            pathlib.Path("script.json").write_text(json.dumps({"edits": [
                {"type": "WriteEdit", "offset": 1.0, "data": "ff"},
            ]}))

            result = self.invoke("apply", "file.bin", "script.json")
            self.assertEqual(result.exit_code, 1)
            self.assertIsInstance(result.exception, SystemExit)
            self.assertIn("offset must be an integer", result.output)
            self.assertEqual(path.read_bytes(), b"0123456789")

            result = self.invoke("sign", "script.json", "script.json")
            self.assertEqual(result.exit_code, 1)
            self.assertIsInstance(result.exception, SystemExit)

    def test_digest_unreadable(self):
        with self.runner.isolated_filesystem():
            pathlib.Path("file.bin").write_bytes(b"contents")
            with mock.patch.object(main.fs, "open_path",
                side_effect=PermissionError("permission denied")):
                result = self.invoke("digest", "file.bin")

            self.assertEqual(result.exit_code, 1)
            self.assertIsInstance(result.exception, SystemExit)
            self.assertIn("permission denied", result.output)

    def test_keygen_sign_apply(self):
        with self.runner.isolated_filesystem():
            path = pathlib.Path("file.bin")
            path.write_bytes(b"0123456789")

            result = self.invoke("keygen")
            self.assertEqual(result.exit_code, 0, result.output)
            key_pair = json.loads(result.output)
            pathlib.Path("key.json").write_text(result.output)

            script = edits.Script([edits.WriteEdit(0, b"signed")])
            pathlib.Path("script.json").write_text(script.dumps())

            result = self.invoke("apply", "--require-signature",
                "file.bin", "script.json")
            self.assertEqual(result.exit_code, 1)
            self.assertEqual(path.read_bytes(), b"0123456789")

            result = self.invoke("sign", "script.json", "key.json")
            self.assertEqual(result.exit_code, 0, result.output)
            signed = edits.Script.loads(result.output)
            integrity.verify(signed, [key_pair["verify_key"]])
            pathlib.Path("signed.json").write_text(result.output)

            other = integrity.KeyPair().serialize()["verify_key"]
            result = self.invoke("apply", "--trust", other,
                "file.bin", "signed.json")
            self.assertEqual(result.exit_code, 1)
            self.assertEqual(path.read_bytes(), b"0123456789")

            result = self.invoke("apply", "--trust", key_pair["verify_key"],
                "file.bin", "signed.json")
            self.assertEqual(result.exit_code, 0, result.output)
            self.assertEqual(path.read_bytes(), b"signed6789")

if __name__ == '__main__':
    unittest.main()
