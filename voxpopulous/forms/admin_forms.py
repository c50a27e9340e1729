"""
JSON forms for the back-office API.

FlaskForm reads request.get_json() for JSON requests; CSRF is enforced once by
CSRFProtect (X-CSRFToken header), so the forms themselves skip it.
"""
from flask_wtf import FlaskForm
from wtforms import StringField, PasswordField, BooleanField, SelectField, SelectMultipleField, IntegerField
from wtforms.validators import DataRequired, Length, NumberRange, Optional, Regexp
from voxpopulous.models import AdminMenuCode, AddonCode, UserRole, BillingStatus


class JSONForm(FlaskForm):
    class Meta:
        csrf = False

    def error_message(self):
        """First validation error, for the JSON error payload."""
        for field in self:
            if field.errors:
                return f"{field.label.text} : {field.errors[0]}"
        return 'Formulaire invalide'


class LoginForm(JSONForm):
    """Login for tenant admins, elected officials and super admins."""

    email = StringField(
        'Email',
        validators=[DataRequired(message="L'email est requis"), Length(max=255)]
    )
    password = PasswordField(
        'Mot de passe',
        validators=[DataRequired(message='Le mot de passe est requis')]
    )


class TenantUserForm(JSONForm):
    """New back-office administrator."""

    name = StringField('Nom', validators=[DataRequired(message='Le nom est requis'), Length(max=200)])
    email = StringField('Email', validators=[DataRequired(message="L'email est requis"), Length(max=255)])
    password = PasswordField(
        'Mot de passe',
        validators=[
            DataRequired(message='Le mot de passe est requis'),
            Length(min=8, message='Le mot de passe doit contenir au moins 8 caractères')
        ]
    )
    role = SelectField(
        'Rôle',
        choices=[(role.value, role.value) for role in UserRole],
        default=UserRole.ADMIN.value
    )


class ChildTenantForm(JSONForm):
    """New commune or association attached to the current tenant."""

    name = StringField('Nom', validators=[DataRequired(message='Le nom est requis'), Length(max=200)])
    slug = StringField(
        'Identifiant',
        validators=[
            Optional(),
            Length(max=80),
            Regexp(r'^[a-z0-9]+(?:-[a-z0-9]+)*$', message='Minuscules, chiffres et tirets uniquement')
        ]
    )


class ElectedOfficialForm(JSONForm):
    """New elected official (or association board member)."""

    first_name = StringField('Prénom', name='firstName', validators=[DataRequired(), Length(max=100)])
    last_name = StringField('Nom', name='lastName', validators=[DataRequired(), Length(max=100)])
    function = StringField('Fonction', validators=[DataRequired(), Length(max=200)])
    email = StringField('Email', validators=[Optional(), Length(max=255)])
    password = PasswordField(
        'Mot de passe',
        validators=[Optional(), Length(min=8, message='Le mot de passe doit contenir au moins 8 caractères')]
    )
    has_full_access = BooleanField('Accès complet', name='hasFullAccess', default=False)
    menu_codes = SelectMultipleField(
        'Menus autorisés',
        name='menuPermissions',
        choices=[(code.value, code.value) for code in AdminMenuCode]
    )


class MenuPermissionsForm(JSONForm):
    """Replace the menu permissions of an elected official."""

    has_full_access = BooleanField('Accès complet', name='hasFullAccess', default=False)
    menu_codes = SelectMultipleField(
        'Menus autorisés',
        name='menuPermissions',
        choices=[(code.value, code.value) for code in AdminMenuCode]
    )


class AddonPurchaseForm(JSONForm):
    """Set the purchased quantity of an addon."""

    addon = SelectField('Option', choices=[(code.value, code.value) for code in AddonCode])
    # 0 is a valid quantity, so presence is checked by the view
    quantity = IntegerField(
        'Quantité',
        validators=[Optional(), NumberRange(min=0, message='La quantité doit être positive')]
    )


class TenantSuspendForm(JSONForm):
    reason = StringField('Motif', validators=[Optional(), Length(max=2000)])


class BillingStatusForm(JSONForm):
    billing_status = SelectField(
        'Statut de facturation',
        name='billingStatus',
        choices=[(status.value, status.value) for status in BillingStatus]
    )
