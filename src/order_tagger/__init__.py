"""Order sequence tagger: classifies Shopify orders as first or repeat purchases."""

__version__ = "1.0.0"
