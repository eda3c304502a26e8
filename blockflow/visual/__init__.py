"""Editor graph models, extraction and layout validation."""
