"""Pure domain layer: clock, request DTOs, policy, quantity arithmetic and feasibility."""
