from __future__ import annotations

import os

# Settings() is built at import time; give it a local project to point at
os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-service-role-key")
