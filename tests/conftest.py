import os
import tempfile

# Point the service at a throwaway database before any module reads its config.
_tmp_dir = tempfile.mkdtemp(prefix="forge-tests-")
os.environ.setdefault("FORGE_DATABASE_URL", f"sqlite:///{os.path.join(_tmp_dir, 'forge.db')}")
os.environ.setdefault("FORGE_ACCESS_CODE", "1111")
os.environ.setdefault("JWT_SECRET", "test-secret")
