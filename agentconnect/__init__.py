"""Agent Connect: pairing, encrypted messaging, and presence between autonomous agents."""
