"""Pure domain layer: DTOs, enums, and the clock abstraction."""
