"""HTTP trigger interface."""
