"""External service integrations.

Modules:
    gmail          Gmail REST + Google OAuth token client, connection records
    email_sync     Unread mail → inbox rows → inquiries (batches of 5)
    email_parser   OpenAI chat-completion inquiry extraction + domain cache
    mailer         Inquiry email composer, sends through Gmail
"""
