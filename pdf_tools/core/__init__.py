"""Settings, exceptions and helpers shared by the engine and the service layer."""
