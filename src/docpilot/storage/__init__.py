"""SQLite persistence shared by workspace and history repositories."""
