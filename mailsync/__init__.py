"""mailsync: mailbox synchronization engine for the email client."""
