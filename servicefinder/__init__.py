"""Local services directory backed by Supabase."""
