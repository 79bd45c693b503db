"""
Utility Scripts.

Operational scripts for the dashboard backend:

- setup_supabase.py: Print or verify the Supabase table schema

Run scripts with: python -m scripts.<script_name>
"""
