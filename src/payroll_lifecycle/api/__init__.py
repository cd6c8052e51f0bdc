"""FastAPI application for the payroll run lifecycle."""
