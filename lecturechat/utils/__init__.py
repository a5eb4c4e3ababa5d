"""Cross-cutting helpers: logging and client construction."""
