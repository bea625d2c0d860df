"""ERP domain modules.

Modules:
    products     Product master
    inventory    Batches, stock levels, FEFO picking, stock movements
    customers    Trading customers
    purchasing   Suppliers, purchase orders, Goods Receipt Notes
    sales        Delivery challans and sales invoices
    finance      Payments, expenses, period summary
    settings     Business settings
    dashboard    Home KPIs and notifications
"""
