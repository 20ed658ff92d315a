from django.urls import path
from . import views

app_name = 'accounts'

urlpatterns = [
    # Authentication
    path('signup/', views.signup, name='signup'),
    path('login/', views.login, name='login'),
    path('logout/', views.logout, name='logout'),

    # Account management
    path('account/', views.get_account, name='account'),
    path('account/profile/', views.update_account_profile, name='update-profile'),
    path('account/password/', views.update_account_password, name='update-password'),
    path('account/delete/', views.delete_account_view, name='delete-account'),
    path('account/unlink/<str:provider>/', views.unlink_account_provider, name='unlink-provider'),

    # Password reset
    path('forgot/', views.forgot_password, name='forgot'),
    path('reset/<str:token>/', views.reset_password, name='reset'),
]
