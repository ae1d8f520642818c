"""End-to-end tests that drive the evolvedb CLI against temporary projects."""
