"""JSONPlaceholder: descriptor-only, served by DescriptorAdapter."""
