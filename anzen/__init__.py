"""
Anzen Pharma ERP: pharmaceutical distribution back office + CRM inquiry pipeline

Packages:
    api/        Flask blueprint, route modules and page templates
    core/       Paths, secrets, database, auth and navigation
    erp/        Products, inventory, customers, purchasing, sales, finance
    crm/        Contacts, inquiries and reminders
    agents/     Gmail client, email sync, LLM email parser, mailer
    forms/      PDF documents (GRN, delivery challan)
"""
