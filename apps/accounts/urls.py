from django.urls import path
from rest_framework_simplejwt.views import TokenObtainPairView
from . import views

app_name = 'users'

urlpatterns = [
    # Token issuing is delegated to simplejwt
    path('login/', TokenObtainPairView.as_view(), name='login'),
    path('user/', views.get_current_user, name='current-user'),
]
