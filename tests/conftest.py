"""Point the application at a throwaway sqlite database before it is imported"""
import os
import tempfile

_tmp_dir = tempfile.mkdtemp(prefix="qanoonmate-tests-")

os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_tmp_dir, 'test.db')}"
os.environ["UPLOAD_DIR"] = os.path.join(_tmp_dir, "uploads")
os.environ["PRIVATE_UPLOAD_DIR"] = os.path.join(_tmp_dir, "private_uploads")
os.environ["ENABLE_SCHEDULER"] = "false"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["PAYMENT_WEBHOOK_SECRET"] = "webhook-secret"
os.environ["ASSISTANT_STREAM_CHUNK"] = "10"
os.environ["LOG_LEVEL"] = "WARNING"
