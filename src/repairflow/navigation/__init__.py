"""Category-tree navigation and answer-to-option resolution."""
