"""Dynamic QR links: stable printed codes whose destination can be changed."""
