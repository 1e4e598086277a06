"""Review Harvester: adaptive review collection for a single e-commerce site."""
