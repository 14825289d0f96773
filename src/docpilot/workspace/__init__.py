"""Documents, review comments and chat history."""
