# src/__init__.py
"""Recipe editor backend: edit sessions with debounced autosave over Supabase."""
