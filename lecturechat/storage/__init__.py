"""Persistence layer: repository interface, Supabase and in-memory implementations."""
