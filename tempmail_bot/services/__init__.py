"""Application services: the mailbox engine and user notifications."""
