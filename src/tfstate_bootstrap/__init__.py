"""Bootstrap the Azure remote state backend for a Terraform project."""
