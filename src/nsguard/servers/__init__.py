"""HTTP listeners for nsguard."""
