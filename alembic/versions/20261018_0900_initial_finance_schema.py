"""Initial finance schema

Revision ID: 20261018_0900_initial
Revises:
Create Date: 2026-10-18 09:00:00.000000

Creates:
1. Staff directory (employees) and security questions
2. Approval requests and the expense book
3. Cash ledger: balance singleton, transactions, deposits
4. Supplier advances and coffee payment records
5. Finance notifications (with outbox delivery fields)
6. Withdrawal requests, admin approvals, SMS verification codes
7. Verification portal and its audit log
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261018_0900_initial'
down_revision = None
branch_labels = None
depends_on = None


def _id_column():
    return sa.Column('id', sa.Uuid(), nullable=False)


def _timestamp_columns():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def _money(name: str, nullable: bool = False):
    return sa.Column(name, sa.Numeric(precision=15, scale=2), nullable=nullable)


def upgrade() -> None:
    # ===========================================
    # STAFF
    # ===========================================

    op.create_table(
        'employees',
        _id_column(),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('role', sa.String(100), nullable=False),
        sa.Column('department', sa.String(100), nullable=True),
        sa.Column('position', sa.String(100), nullable=True),
        sa.Column('phone', sa.String(30), nullable=True),
        sa.Column('permissions', sa.JSON(), nullable=False),
        sa.Column('status', sa.Enum('Active', 'Disabled', name='employeestatus'), nullable=False),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint('id', name='pk_employees'),
    )
    op.create_index('ix_employees_email', 'employees', ['email'], unique=True)

    op.create_table(
        'user_security_questions',
        _id_column(),
        sa.Column('user_email', sa.String(255), nullable=False),
        sa.Column('question_1', sa.String(500), nullable=False),
        sa.Column('answer_1_hash', sa.String(64), nullable=False),
        sa.Column('question_2', sa.String(500), nullable=False),
        sa.Column('answer_2_hash', sa.String(64), nullable=False),
        sa.Column('question_3', sa.String(500), nullable=False),
        sa.Column('answer_3_hash', sa.String(64), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint('id', name='pk_user_security_questions'),
    )
    op.create_index(
        'ix_user_security_questions_user_email', 'user_security_questions', ['user_email'], unique=True
    )

    # ===========================================
    # APPROVAL REQUESTS
    # ===========================================

    op.create_table(
        'approval_requests',
        _id_column(),
        sa.Column('type', sa.String(100), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        _money('amount'),
        sa.Column('department', sa.String(100), nullable=True),
        sa.Column('requested_by', sa.String(255), nullable=False),
        sa.Column('priority', sa.String(20), nullable=False),
        sa.Column('status', sa.String(50), nullable=False),
        sa.Column('admin_approved', sa.Boolean(), nullable=False),
        sa.Column('admin_approved_by', sa.String(255), nullable=True),
        sa.Column('admin_approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('finance_approved', sa.Boolean(), nullable=False),
        sa.Column('finance_approved_by', sa.String(255), nullable=True),
        sa.Column('finance_approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejected_by', sa.String(255), nullable=True),
        sa.Column('rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint('id', name='pk_approval_requests'),
    )
    op.create_index('ix_approval_requests_type', 'approval_requests', ['type'])
    op.create_index('ix_approval_requests_requested_by', 'approval_requests', ['requested_by'])
    op.create_index('ix_approval_requests_status', 'approval_requests', ['status'])

    op.create_table(
        'finance_expenses',
        _id_column(),
        sa.Column('description', sa.String(500), nullable=False),
        _money('amount'),
        sa.Column('category', sa.String(100), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('approved_by', sa.String(255), nullable=True),
        sa.Column('created_by', sa.String(255), nullable=True),
        sa.Column('approval_request_id', sa.Uuid(), nullable=True),
        *_timestamp_columns(),
        sa.ForeignKeyConstraint(
            ['approval_request_id'], ['approval_requests.id'],
            name='fk_finance_expenses_approval_request_id_approval_requests',
            ondelete='SET NULL',
        ),
        sa.PrimaryKeyConstraint('id', name='pk_finance_expenses'),
    )
    op.create_index('ix_finance_expenses_category', 'finance_expenses', ['category'])
    op.create_index('ix_finance_expenses_date', 'finance_expenses', ['date'])
    op.create_index('ix_finance_expenses_status', 'finance_expenses', ['status'])
    op.create_index('ix_finance_expenses_approval_request_id', 'finance_expenses', ['approval_request_id'])

    # ===========================================
    # CASH LEDGER
    # ===========================================

    op.create_table(
        'finance_cash_balance',
        _id_column(),
        sa.Column('singleton', sa.Boolean(), nullable=False),
        _money('current_balance'),
        sa.Column('last_updated', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_by', sa.String(255), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint('id', name='pk_finance_cash_balance'),
        sa.UniqueConstraint('singleton', name='uq_finance_cash_balance_singleton'),
    )

    op.create_table(
        'finance_cash_transactions',
        _id_column(),
        sa.Column(
            'transaction_type',
            sa.Enum(
                'deposit', 'recovery', 'expense', 'salary', 'payment', 'withdrawal',
                name='cashtransactiontype',
            ),
            nullable=False,
        ),
        _money('amount'),
        _money('balance_after'),
        sa.Column('reference', sa.String(255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.String(255), nullable=False),
        sa.Column('status', sa.Enum('confirmed', 'pending', name='cashtransactionstatus'), nullable=False),
        sa.Column('confirmed_by', sa.String(255), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint('id', name='pk_finance_cash_transactions'),
    )
    op.create_index(
        'ix_finance_cash_transactions_transaction_type', 'finance_cash_transactions', ['transaction_type']
    )
    op.create_index('ix_finance_cash_transactions_reference', 'finance_cash_transactions', ['reference'])

    op.create_table(
        'finance_cash_deposits',
        _id_column(),
        _money('amount'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('submitted_by', sa.String(255), nullable=False),
        sa.Column('status', sa.Enum('pending', 'confirmed', name='cashdepositstatus'), nullable=False),
        sa.Column('confirmed_by', sa.String(255), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('transaction_id', sa.Uuid(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        *_timestamp_columns(),
        sa.ForeignKeyConstraint(
            ['transaction_id'], ['finance_cash_transactions.id'],
            name='fk_finance_cash_deposits_transaction_id_finance_cash_transactions',
            ondelete='SET NULL',
        ),
        sa.PrimaryKeyConstraint('id', name='pk_finance_cash_deposits'),
    )
    op.create_index('ix_finance_cash_deposits_status', 'finance_cash_deposits', ['status'])

    # ===========================================
    # SUPPLIERS
    # ===========================================

    op.create_table(
        'finance_advances',
        _id_column(),
        sa.Column('supplier_name', sa.String(255), nullable=False),
        sa.Column('supplier_code', sa.String(50), nullable=True),
        _money('amount'),
        _money('recovered_amount'),
        sa.Column('is_closed', sa.Boolean(), nullable=False),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('issued_by', sa.String(255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint('id', name='pk_finance_advances'),
    )
    op.create_index('ix_finance_advances_supplier_code', 'finance_advances', ['supplier_code'])
    op.create_index('ix_finance_advances_is_closed', 'finance_advances', ['is_closed'])

    op.create_table(
        'payment_records',
        _id_column(),
        sa.Column('supplier_name', sa.String(255), nullable=False),
        sa.Column('supplier_code', sa.String(50), nullable=True),
        sa.Column('batch_number', sa.String(100), nullable=True),
        sa.Column('quality_assessment_ref', sa.String(100), nullable=True),
        _money('amount'),
        _money('advance_deducted'),
        _money('amount_paid'),
        _money('balance'),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('method', sa.String(50), nullable=True),
        sa.Column('paid_by', sa.String(255), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint('id', name='pk_payment_records'),
    )
    op.create_index('ix_payment_records_supplier_code', 'payment_records', ['supplier_code'])
    op.create_index('ix_payment_records_status', 'payment_records', ['status'])

    # ===========================================
    # NOTIFICATIONS
    # ===========================================

    op.create_table(
        'finance_notifications',
        _id_column(),
        sa.Column(
            'type',
            sa.Enum(
                'approval_request', 'system', 'announcement', 'reminder', 'payment_ready',
                name='notificationtype',
            ),
            nullable=False,
        ),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('priority', sa.Enum('High', 'Medium', 'Low', name='notificationpriority'), nullable=False),
        sa.Column('target_user_email', sa.String(255), nullable=True),
        sa.Column('target_role', sa.String(100), nullable=True),
        sa.Column('sender_name', sa.String(255), nullable=False),
        sa.Column('sender_email', sa.String(255), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            'delivery_status',
            sa.Enum('pending', 'delivered', 'failed', name='deliverystatus'),
            nullable=False,
        ),
        sa.Column('delivery_attempts', sa.Integer(), nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint('id', name='pk_finance_notifications'),
    )
    op.create_index('ix_finance_notifications_type', 'finance_notifications', ['type'])
    op.create_index('ix_finance_notifications_target_user_email', 'finance_notifications', ['target_user_email'])
    op.create_index('ix_finance_notifications_is_read', 'finance_notifications', ['is_read'])
    op.create_index('ix_finance_notifications_delivery_status', 'finance_notifications', ['delivery_status'])

    # ===========================================
    # WITHDRAWALS
    # ===========================================

    op.create_table(
        'money_requests',
        _id_column(),
        sa.Column('requested_by', sa.String(255), nullable=False),
        sa.Column('employee_name', sa.String(255), nullable=True),
        _money('amount'),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('request_type', sa.String(50), nullable=False),
        sa.Column(
            'status',
            sa.Enum('pending', 'pending_finance', 'approved', 'rejected', name='withdrawalstatus'),
            nullable=False,
        ),
        sa.Column(
            'payment_channel',
            sa.Enum('CASH', 'MOBILE_MONEY', 'BANK', name='paymentchannel'),
            nullable=False,
        ),
        sa.Column('phone_number', sa.String(30), nullable=True),
        sa.Column('disbursement_bank_name', sa.String(255), nullable=True),
        sa.Column('disbursement_account_number', sa.String(50), nullable=True),
        sa.Column('disbursement_account_name', sa.String(255), nullable=True),
        sa.Column('required_approvals', sa.Integer(), nullable=False),
        sa.Column('admin_approved', sa.Boolean(), nullable=False),
        sa.Column('admin_approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('finance_approved', sa.Boolean(), nullable=False),
        sa.Column('approved_by', sa.String(255), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('transaction_id', sa.Uuid(), nullable=True),
        sa.Column('rejected_by', sa.String(255), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        *_timestamp_columns(),
        sa.ForeignKeyConstraint(
            ['transaction_id'], ['finance_cash_transactions.id'],
            name='fk_money_requests_transaction_id_finance_cash_transactions',
            ondelete='SET NULL',
        ),
        sa.PrimaryKeyConstraint('id', name='pk_money_requests'),
    )
    op.create_index('ix_money_requests_requested_by', 'money_requests', ['requested_by'])
    op.create_index('ix_money_requests_status', 'money_requests', ['status'])

    op.create_table(
        'withdrawal_approvals',
        _id_column(),
        sa.Column('withdrawal_request_id', sa.Uuid(), nullable=False),
        sa.Column('approver_email', sa.String(255), nullable=False),
        sa.Column('approver_name', sa.String(255), nullable=True),
        sa.Column(
            'verification_method',
            sa.Enum('sms', 'security_questions', name='stepupmethod'),
            nullable=False,
        ),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=False),
        *_timestamp_columns(),
        sa.ForeignKeyConstraint(
            ['withdrawal_request_id'], ['money_requests.id'],
            name='fk_withdrawal_approvals_withdrawal_request_id_money_requests',
            ondelete='CASCADE',
        ),
        sa.PrimaryKeyConstraint('id', name='pk_withdrawal_approvals'),
        sa.UniqueConstraint(
            'withdrawal_request_id', 'approver_email', name='uq_withdrawal_approvals_request_approver'
        ),
    )
    op.create_index(
        'ix_withdrawal_approvals_withdrawal_request_id', 'withdrawal_approvals', ['withdrawal_request_id']
    )

    op.create_table(
        'withdrawal_verification_codes',
        _id_column(),
        sa.Column('withdrawal_request_id', sa.Uuid(), nullable=False),
        sa.Column('approver_email', sa.String(255), nullable=False),
        sa.Column('phone', sa.String(30), nullable=False),
        sa.Column('code_hash', sa.String(64), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('max_attempts', sa.Integer(), nullable=False),
        sa.Column('verified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('consumed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_used', sa.Boolean(), nullable=False),
        *_timestamp_columns(),
        sa.ForeignKeyConstraint(
            ['withdrawal_request_id'], ['money_requests.id'],
            name='fk_withdrawal_verification_codes_withdrawal_request_id_money_requests',
            ondelete='CASCADE',
        ),
        sa.PrimaryKeyConstraint('id', name='pk_withdrawal_verification_codes'),
    )
    op.create_index(
        'ix_withdrawal_verification_codes_withdrawal_request_id',
        'withdrawal_verification_codes',
        ['withdrawal_request_id'],
    )
    op.create_index(
        'ix_withdrawal_verification_codes_approver_email', 'withdrawal_verification_codes', ['approver_email']
    )

    # ===========================================
    # VERIFICATION PORTAL
    # ===========================================

    op.create_table(
        'verifications',
        _id_column(),
        sa.Column('code', sa.String(50), nullable=False),
        sa.Column('type', sa.Enum('employee_id', 'document', name='verificationtype'), nullable=False),
        sa.Column('subtype', sa.String(100), nullable=True),
        sa.Column(
            'status',
            sa.Enum('verified', 'expired', 'revoked', name='verificationstatus'),
            nullable=False,
        ),
        sa.Column('issued_to_name', sa.String(255), nullable=False),
        sa.Column('employee_no', sa.String(50), nullable=True),
        sa.Column('position', sa.String(100), nullable=True),
        sa.Column('department', sa.String(100), nullable=True),
        sa.Column('workstation', sa.String(100), nullable=True),
        sa.Column('photo_url', sa.String(500), nullable=True),
        sa.Column('issued_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('valid_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reference_no', sa.String(100), nullable=True),
        sa.Column('file_url', sa.String(500), nullable=True),
        sa.Column('meta', sa.JSON(), nullable=True),
        sa.Column('revoked_reason', sa.Text(), nullable=True),
        sa.Column('created_by', sa.String(255), nullable=True),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint('id', name='pk_verifications'),
    )
    op.create_index('ix_verifications_code', 'verifications', ['code'], unique=True)

    op.create_table(
        'verification_audit_logs',
        _id_column(),
        sa.Column('action', sa.Enum('create', 'revoke', name='verificationauditaction'), nullable=False),
        sa.Column('code', sa.String(50), nullable=False),
        sa.Column('admin_user', sa.String(255), nullable=True),
        sa.Column('admin_email', sa.String(255), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint('id', name='pk_verification_audit_logs'),
    )
    op.create_index('ix_verification_audit_logs_code', 'verification_audit_logs', ['code'])


def downgrade() -> None:
    op.drop_table('verification_audit_logs')
    op.drop_table('verifications')
    op.drop_table('withdrawal_verification_codes')
    op.drop_table('withdrawal_approvals')
    op.drop_table('money_requests')
    op.drop_table('finance_notifications')
    op.drop_table('payment_records')
    op.drop_table('finance_advances')
    op.drop_table('finance_cash_deposits')
    op.drop_table('finance_cash_transactions')
    op.drop_table('finance_cash_balance')
    op.drop_table('finance_expenses')
    op.drop_table('approval_requests')
    op.drop_table('user_security_questions')
    op.drop_table('employees')

    for enum_name in (
        'verificationauditaction', 'verificationstatus', 'verificationtype',
        'stepupmethod', 'paymentchannel', 'withdrawalstatus',
        'deliverystatus', 'notificationpriority', 'notificationtype',
        'cashdepositstatus', 'cashtransactionstatus', 'cashtransactiontype',
        'employeestatus',
    ):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
