"""Pure domain layer: lifecycle tables, typed metadata, payloads, DTOs."""
