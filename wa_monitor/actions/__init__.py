"""Action layer: match notifications and the interactive control console."""
